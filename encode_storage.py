"""Print out/storage.json as base64 for the LOYVERSE_STORAGE_B64 secret.

Usage:
    python encode_storage.py [path/to/storage.json]
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from exporter.config import Settings
from exporter.session import encode_storage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)
log = logging.getLogger("encode")


def main(argv: list[str]) -> int:
    path = Path(argv[0]) if argv else Settings.from_env().storage_path
    if not path.exists():
        log.error("%s not found. Run login_capture.py first.", path)
        return 1
    print("\n=== BASE64 (secret: LOYVERSE_STORAGE_B64) ===\n")
    print(encode_storage(path))
    print("\n=== END ===\n")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
