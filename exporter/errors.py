"""Exceptions that cross the engine boundary.

Only ``SessionUnavailable`` and ``ExportExhausted`` are meant to reach the
process boundary; everything else is handled inside the run loop.
"""

from __future__ import annotations

from typing import Any


class ExportError(Exception):
    """Base class for export failures."""


class SessionUnavailable(ExportError):
    """No usable authenticated session could be built."""


class ArtifactRejected(ExportError):
    """A captured payload failed validation or could not be persisted."""


class ExportExhausted(ExportError):
    """Every surface and strategy was tried without a validated artifact."""

    def __init__(self, message: str, outcome: Any = None) -> None:
        super().__init__(message)
        self.outcome = outcome
