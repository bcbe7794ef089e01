"""Download the back-office CSV export through an authenticated browser.

Usage:
    python export_csv.py
    python export_csv.py https://r.loyverse.com/dashboard/#/goods/items   # try only these pages

Exit code 0 when out/inventory.csv was captured and validated, 1 otherwise.
Settings come from the environment / .env (see exporter/config.py).
"""

from __future__ import annotations

import asyncio
import logging
import sys

from exporter.config import Settings
from exporter.errors import ExportExhausted, SessionUnavailable
from exporter.runner import export

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)
log = logging.getLogger("export")


async def main(urls: list[str]) -> int:
    settings = Settings.from_env()
    if urls:
        settings = settings.model_copy(update={"export_urls": " ".join(urls)})
    settings.outdir.mkdir(parents=True, exist_ok=True)

    try:
        outcome = await asyncio.wait_for(export(settings), timeout=settings.run_timeout_s)
    except SessionUnavailable as exc:
        log.error("[context] %s", exc)
        return 1
    except ExportExhausted as exc:
        log.error("[error] %s", exc)
        if exc.outcome is not None:
            for attempt in exc.outcome.attempts:
                log.error("  %(surface)s  %(strategy)s  %(result)s", attempt)
        return 1
    except asyncio.TimeoutError:
        log.error("[error] Run exceeded %.0fs and was stopped (see %s)",
                  settings.run_timeout_s, settings.screenshot_path)
        return 1

    log.info("[ok] Downloaded: %s (via %s, %s)", outcome.artifact_path, outcome.channel, outcome.strategy)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
