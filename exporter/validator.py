"""Accept or reject captured payloads as plausible delimited tables.

Guards against saving an HTML login/error page or a binary or empty body as
if it were the export. Business content of the table is never inspected.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from exporter.errors import ArtifactRejected

log = logging.getLogger("validator")

DELIMITERS = (",", ";", "\t")
MIN_FIELDS = 2          # a row must split into at least this many fields
SNIFF_CHARS = 4096      # how much of the head we inspect for markup
MAX_UNDECODABLE = 0.1   # share of U+FFFD tolerated in the decoded head

_MARKUP = re.compile(
    r"<\s*(!doctype\s+html|html|head|body|script|iframe|\?xml)\b", re.I,
)


class CaptureChannel(str, Enum):
    FILE_DOWNLOAD = "FileDownload"
    POPUP_DOCUMENT = "PopupDocument"
    NETWORK_RESPONSE = "NetworkResponse"
    IN_PAGE_OBJECT = "InPageObject"


class Artifact(BaseModel):
    """A validated export payload plus where it came from."""

    model_config = ConfigDict(frozen=True)

    payload: bytes
    channel: CaptureChannel
    source: str | None = None
    captured_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
    )

    @property
    def size(self) -> int:
        return len(self.payload)


def _as_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def _as_text(payload: bytes) -> str:
    return payload.decode("utf-8-sig", errors="replace")


def _field_count(line: str, delimiter: str) -> int:
    try:
        row = next(csv.reader(io.StringIO(line), delimiter=delimiter))
    except (csv.Error, StopIteration):
        return 0
    return len(row)


def rejection_reason(payload: bytes | str) -> str | None:
    """Why ``payload`` is not a delimited table, or None if it looks like one."""
    data = _as_bytes(payload)
    if not data.strip():
        return "empty payload"
    if b"\x00" in data[:SNIFF_CHARS]:
        return "binary payload"

    text = _as_text(data)
    sample = text[:SNIFF_CHARS]
    if sample.count("\ufffd") > MAX_UNDECODABLE * len(sample):
        return "binary payload"
    head = sample.lstrip()
    if head.startswith("<") or _MARKUP.search(head):
        return "markup document"

    lines = [ln for ln in text.splitlines() if ln.strip()]
    if len(lines) < 2:
        return "fewer than two lines"

    first, second = lines[0], lines[1]
    for delim in DELIMITERS:
        if (_field_count(first, delim) >= MIN_FIELDS
                and _field_count(second, delim) >= MIN_FIELDS):
            return None
    return "no delimiter splits the first two lines"


def validate(
    payload: bytes | str,
    channel: CaptureChannel,
    source: str | None = None,
) -> Artifact | None:
    """Return an Artifact for a tabular payload, None when rejected."""
    reason = rejection_reason(payload)
    if reason:
        log.info("Rejected %s payload from %s: %s", channel.value, source or "?", reason)
        return None
    return Artifact(payload=_as_bytes(payload), channel=channel, source=source)


def persist(artifact: Artifact, path: Path) -> Path:
    """Write the artifact bytes exactly as captured.

    The bytes go to a ``.part`` sibling first and only replace ``path`` once
    they read back identical and still validate. The partial file never
    survives a failure.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    part = path.with_name(path.name + ".part")
    try:
        part.write_bytes(artifact.payload)
        written = part.read_bytes()
        if written != artifact.payload:
            raise ArtifactRejected(f"{part} does not match the captured bytes")
        reason = rejection_reason(written)
        if reason:
            raise ArtifactRejected(f"{part}: {reason}")
        os.replace(part, path)
    except (OSError, ArtifactRejected):
        part.unlink(missing_ok=True)
        raise
    log.info("Saved %s (%d bytes via %s)", path, artifact.size, artifact.channel.value)
    return path
