"""Best-effort failure evidence: a full-page screenshot and a Playwright trace.

Nothing here may raise; a missing screenshot must never hide the real error.
"""

from __future__ import annotations

import logging
from pathlib import Path

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

log = logging.getLogger("diagnostics")


async def save_screenshot(
    page: Page | None,
    path: Path,
    context: BrowserContext | None = None,
    fallback_url: str | None = None,
) -> Path | None:
    """Screenshot the last visited page, or a fresh page at ``fallback_url``."""
    path = Path(path)
    opened: Page | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if page is None or page.is_closed():
            if context is None:
                return None
            opened = page = await context.new_page()
            if fallback_url:
                try:
                    await page.goto(fallback_url, wait_until="domcontentloaded")
                except PlaywrightError as exc:
                    log.warning("Fallback page did not load: %s", exc)
        await page.screenshot(path=str(path), full_page=True)
        log.error("Saved screenshot to %s", path)
        return path
    except (PlaywrightError, OSError) as exc:
        log.warning("Screenshot failed: %s", exc)
        return None
    finally:
        if opened is not None:
            try:
                await opened.close()
            except PlaywrightError:
                pass


async def start_trace(context: BrowserContext) -> bool:
    try:
        await context.tracing.start(screenshots=True, snapshots=True, sources=False)
        return True
    except PlaywrightError as exc:
        log.warning("Tracing unavailable: %s", exc)
        return False


async def stop_trace(context: BrowserContext, path: Path | None) -> Path | None:
    """Stop tracing; keep the archive only when ``path`` is given."""
    try:
        if path is None:
            await context.tracing.stop()
            return None
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await context.tracing.stop(path=str(path))
        log.error("Saved trace to %s", path)
        return Path(path)
    except (PlaywrightError, OSError) as exc:
        log.warning("Trace not saved: %s", exc)
        return None
