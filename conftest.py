"""Shared fixtures: a headless Chromium page serving inline HTML.

Browser tests are skipped when Chromium is not installed
(``playwright install chromium``).
"""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from exporter.instrumentation import install_instrumentation

BASE_URL = "https://backoffice.test/"


class _NoBrowser:
    def __init__(self, reason):
        self.reason = reason


async def _serve(html, fn, routes):
    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch(headless=True)
        except PlaywrightError as exc:
            return _NoBrowser(str(exc).splitlines()[0])
        try:
            context = await browser.new_context(accept_downloads=True)
            await install_instrumentation(context)

            async def handler(route):
                url = route.request.url
                for path, (body, headers) in routes.items():
                    if url == BASE_URL + path:
                        await route.fulfill(status=200, body=body, headers=headers)
                        return
                await route.fulfill(status=200, content_type="text/html", body=html)

            await context.route(f"{BASE_URL}**", handler)
            page = await context.new_page()
            await page.goto(BASE_URL, wait_until="domcontentloaded")
            return await fn(page)
        finally:
            await browser.close()


@pytest.fixture
def in_browser():
    """Run ``await fn(page)`` with ``html`` loaded at BASE_URL; return its result.

    ``routes`` maps extra paths under BASE_URL to ``(body, headers)``.
    """
    def run(html, fn, routes=None):
        result = asyncio.run(_serve(html, fn, routes or {}))
        if isinstance(result, _NoBrowser):
            pytest.skip(f"Chromium unavailable: {result.reason}")
        return result

    return run
