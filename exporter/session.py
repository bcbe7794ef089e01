"""Authenticated browsing context for the back-office.

Sources, in order:
  1. LOYVERSE_STORAGE_B64: base64 of a Playwright storage-state JSON (CI)
  2. out/storage.json    : saved by a previous login
  3. LOYVERSE_EMAIL / LOYVERSE_PASSWORD: form login (fails on CAPTCHA/2FA)

The storage state is treated as an opaque credential and never inspected.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from playwright.async_api import Browser, BrowserContext, async_playwright
from playwright.async_api import Error as PlaywrightError

from exporter.config import LOGIN_URL, SIGNIN_URL, Settings
from exporter.errors import SessionUnavailable
from exporter.surfaces import enumerate_surfaces

log = logging.getLogger("session")

EMAIL_SELECTOR = "input[type='email'], input[name='email']"
PASSWORD_SELECTOR = "input[type='password'], input[name='password']"
SUBMIT_SELECTOR = (
    "button:has-text('Sign in'), button:has-text('Log in'), "
    "button:has-text('เข้าสู่ระบบ'), button[type='submit']"
)


def decode_storage(b64: str) -> dict[str, Any]:
    """Decode a base64 storage-state blob."""
    text = base64.b64decode(b64, validate=False).decode("utf-8")
    state = json.loads(text)
    if not isinstance(state, dict):
        raise ValueError("storage state is not a JSON object")
    return state


def encode_storage(path: Path) -> str:
    """Base64 of a storage-state file, ready to paste into a CI secret."""
    return base64.b64encode(Path(path).read_bytes()).decode("ascii")


def load_storage_state(settings: Settings) -> dict[str, Any] | None:
    """Return the first storage state that parses, or None."""
    if settings.storage_b64:
        try:
            return decode_storage(settings.storage_b64)
        except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
            log.error("LOYVERSE_STORAGE_B64 parse error: %s", exc)

    path = settings.storage_path
    if path.exists():
        try:
            state = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(state, dict):
                return state
            log.error("%s is not a JSON object", path)
        except (OSError, ValueError) as exc:
            log.error("%s parse error: %s", path, exc)
    return None


async def login_with_credentials(browser: Browser, settings: Settings) -> BrowserContext:
    """Sign in through the form and persist the resulting storage state."""
    ctx = await browser.new_context(accept_downloads=True)
    try:
        page = await ctx.new_page()
        nav_ms = settings.nav_timeout_s * 1000
        await page.goto(SIGNIN_URL, wait_until="domcontentloaded", timeout=nav_ms)
        await page.wait_for_selector(EMAIL_SELECTOR, timeout=nav_ms)
        await page.fill(EMAIL_SELECTOR, settings.email or "")
        await page.fill(PASSWORD_SELECTOR, settings.password or "")
        await page.locator(SUBMIT_SELECTOR).first.click()
        try:
            await page.wait_for_load_state("networkidle", timeout=nav_ms)
        except PlaywrightError:
            log.warning("Sign-in did not settle, continuing")

        # Touch the back-office so its cookies are set.
        first = enumerate_surfaces(settings.export_urls)[0]
        await page.goto(first.url, wait_until="domcontentloaded", timeout=nav_ms)
        try:
            await page.wait_for_load_state("networkidle", timeout=nav_ms)
        except PlaywrightError:
            pass
        if "signin" in page.url or "login" in page.url:
            raise SessionUnavailable("Sign-in was not accepted (CAPTCHA/2FA or bad credentials)")
        await page.close()
    except PlaywrightError as exc:
        await ctx.close()
        raise SessionUnavailable(f"Sign-in failed: {exc}") from exc
    except SessionUnavailable:
        await ctx.close()
        raise

    try:
        settings.outdir.mkdir(parents=True, exist_ok=True)
        await ctx.storage_state(path=str(settings.storage_path))
        log.info("Saved session to %s", settings.storage_path)
    except (PlaywrightError, OSError) as exc:
        log.warning("Could not persist session: %s", exc)
    return ctx


async def new_session_context(browser: Browser, settings: Settings) -> BrowserContext:
    """Build the authenticated context or raise SessionUnavailable."""
    state = load_storage_state(settings)
    if state is not None:
        return await browser.new_context(storage_state=state, accept_downloads=True)
    if settings.email and settings.password:
        log.info("No stored session, signing in with credentials")
        return await login_with_credentials(browser, settings)
    raise SessionUnavailable(
        "Missing login credentials. Provide LOYVERSE_STORAGE_B64, "
        f"{settings.storage_path} or LOYVERSE_EMAIL/LOYVERSE_PASSWORD",
    )


async def capture_interactive_login(
    settings: Settings,
    wait: Callable[[], Awaitable[Any]] | None = None,
) -> Path:
    """Open a visible browser, let a person sign in (2FA included), save the session.

    ``wait`` is awaited once the login page is open; by default it blocks until
    Enter is pressed in the terminal.
    """
    settings.outdir.mkdir(parents=True, exist_ok=True)
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=False, args=["--start-maximized"])
        try:
            ctx = await browser.new_context(no_viewport=True)
            page = await ctx.new_page()
            log.info("Opening the login page...")
            await page.goto(LOGIN_URL, wait_until="domcontentloaded")
            log.info("Finish signing in (2FA included), then press Enter here once the dashboard shows")
            if wait is None:
                await asyncio.get_running_loop().run_in_executor(None, input)
            else:
                await wait()
            await ctx.storage_state(path=str(settings.storage_path))
            log.info("Saved storage state -> %s", settings.storage_path)
        finally:
            await browser.close()
    return settings.storage_path
