"""Runtime settings read from the environment (and an optional .env file).

All knobs the run controller reads at start live here. Every value has a
default so a bare ``Settings()`` is usable in tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

log = logging.getLogger("config")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DASHBOARD = "https://r.loyverse.com/dashboard/#"
SIGNIN_URL = "https://loyverse.com/signin"
LOGIN_URL = "https://loyverse.com/login"

# Toolbar-equivalent region that must be visible before locating.
READY_SELECTOR = (
    "[role='toolbar'], .toolbar, md-toolbar, header button, "
    "main button, [role='main'] button"
)

TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("%s=%r is not a number, using %s", name, raw, default)
        return default
    if value <= 0:
        log.warning("%s=%r must be positive, using %s", name, raw, default)
        return default
    return value


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


class Settings(BaseModel):
    """Everything the export run needs from the outside world."""

    # Surfaces
    export_urls: str | None = None
    ready_selector: str = READY_SELECTOR
    anchor_selector: str | None = None

    # Output
    outdir: Path = Path("out")
    filename: str = "inventory.csv"
    screenshot_name: str = "error.png"
    trace: bool = False

    # Browser
    headless: bool = True
    run_timeout_s: float = 600.0
    nav_timeout_s: float = 60.0
    settle_ms: int = 1500

    # Capture budgets
    download_timeout_s: float = 120.0
    popup_timeout_s: float = 10.0
    response_timeout_s: float = 60.0
    inpage_timeout_s: float = 15.0
    poll_window_s: float = 5.0
    poll_interval_s: float = 0.25
    dialog_grace_s: float = 2.0

    # Session
    storage_b64: str | None = None
    email: str | None = None
    password: str | None = None

    @property
    def output_path(self) -> Path:
        return self.outdir / self.filename

    @property
    def screenshot_path(self) -> Path:
        return self.outdir / self.screenshot_name

    @property
    def trace_path(self) -> Path:
        return self.outdir / "trace.zip"

    @property
    def storage_path(self) -> Path:
        return self.outdir / "storage.json"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables (loading .env first)."""
        if dotenv:
            load_dotenv()
        return cls(
            export_urls=_env_str("EXPORT_URLS"),
            ready_selector=_env_str("EXPORT_READY_SELECTOR") or READY_SELECTOR,
            anchor_selector=_env_str("EXPORT_ANCHOR_SELECTOR"),
            outdir=Path(_env_str("EXPORT_OUTDIR") or "out"),
            filename=_env_str("EXPORT_FILENAME") or "inventory.csv",
            screenshot_name=_env_str("EXPORT_SCREENSHOT") or "error.png",
            trace=_env_bool("EXPORT_TRACE", False),
            headless=_env_bool("HEADLESS", True),
            run_timeout_s=_env_float("RUN_TIMEOUT_S", 600.0),
            nav_timeout_s=_env_float("NAV_TIMEOUT_S", 60.0),
            download_timeout_s=_env_float("DOWNLOAD_TIMEOUT_S", 120.0),
            popup_timeout_s=_env_float("POPUP_TIMEOUT_S", 10.0),
            response_timeout_s=_env_float("RESPONSE_TIMEOUT_S", 60.0),
            inpage_timeout_s=_env_float("INPAGE_TIMEOUT_S", 15.0),
            storage_b64=_env_str("LOYVERSE_STORAGE_B64"),
            email=_env_str("LOYVERSE_EMAIL"),
            password=_env_str("LOYVERSE_PASSWORD"),
        )
