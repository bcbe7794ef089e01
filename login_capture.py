"""Sign in by hand once and save the session for unattended runs.

Usage:
    python login_capture.py

A visible browser opens on the login page. Complete the sign-in (2FA
included), wait for the dashboard, then press Enter in this terminal.
The session is written to out/storage.json; run encode_storage.py to turn
it into the LOYVERSE_STORAGE_B64 secret.
"""

from __future__ import annotations

import asyncio
import logging

from exporter.config import Settings
from exporter.session import capture_interactive_login

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)

if __name__ == "__main__":
    asyncio.run(capture_interactive_login(Settings.from_env()))
