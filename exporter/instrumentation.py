"""Observer script injected into every page of the browsing context.

Some page variants build the CSV in memory and hand it to the browser as a
``blob:`` / ``data:`` URL without any network request. The init script below
wraps the primitives those variants use and appends what it sees to
``window.__exportCaptureLog``. ``InPageLog`` is the Python-side reader.
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import unquote_to_bytes

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

log = logging.getLogger("instrumentation")

LOG_NAME = "__exportCaptureLog"

INSTRUMENTATION_JS = """
(() => {
  if (window.__exportCaptureInstalled) return;
  window.__exportCaptureInstalled = true;
  const log = window.__exportCaptureLog = window.__exportCaptureLog || [];
  const MAX_TEXT = 20 * 1024 * 1024;
  const push = (entry) => {
    entry.ts = Date.now();
    log.push(entry);
    return entry;
  };
  const absolute = (url) => {
    try { return String(new URL(url, location.href)); } catch (e) { return String(url); }
  };

  // (a) in-memory objects turned into URLs
  const createObjectURL = URL.createObjectURL;
  URL.createObjectURL = function (obj) {
    const url = createObjectURL.apply(this, arguments);
    try {
      const entry = push({
        kind: 'object-url', url: String(url),
        mime: (obj && obj.type) || '', text: null, filename: null,
      });
      if (obj instanceof Blob && obj.size <= MAX_TEXT) {
        obj.text().then((t) => { entry.text = t; }).catch(() => {});
      }
    } catch (e) {}
    return url;
  };

  // (b) anchors marked for download
  const record = (a) => {
    try {
      if (a && a.hasAttribute('download') && a.getAttribute('href')) {
        push({
          kind: 'anchor', url: absolute(a.getAttribute('href')),
          mime: '', text: null, filename: a.getAttribute('download') || null,
        });
      }
    } catch (e) {}
  };
  for (const prop of ['href', 'download']) {
    const desc = Object.getOwnPropertyDescriptor(HTMLAnchorElement.prototype, prop);
    if (!desc || !desc.set) continue;
    Object.defineProperty(HTMLAnchorElement.prototype, prop, {
      configurable: true,
      enumerable: desc.enumerable,
      get: desc.get,
      set: function (value) { desc.set.call(this, value); record(this); },
    });
  }
  const click = HTMLAnchorElement.prototype.click;
  HTMLAnchorElement.prototype.click = function () {
    record(this);
    return click.apply(this, arguments);
  };
  document.addEventListener('click', (ev) => {
    const a = ev.target && ev.target.closest ? ev.target.closest('a[download]') : null;
    if (a) record(a);
  }, true);

  // (c) addresses passed to window.open
  const open = window.open;
  window.open = function (url) {
    try {
      if (url) push({ kind: 'open', url: absolute(url), mime: '', text: null, filename: null });
    } catch (e) {}
    return open.apply(this, arguments);
  };
})();
"""

_READ_JS = f"(since) => (Array.isArray(window.{LOG_NAME}) ? window.{LOG_NAME}.slice(since) : [])"
_SIZE_JS = f"() => (Array.isArray(window.{LOG_NAME}) ? window.{LOG_NAME}.length : 0)"
_FETCH_BLOB_JS = "async (u) => { const r = await fetch(u); return await r.text(); }"


async def install_instrumentation(context: BrowserContext) -> None:
    """Install the observer once, at context creation."""
    await context.add_init_script(INSTRUMENTATION_JS)


def decode_data_url(url: str) -> bytes | None:
    """Decode a ``data:`` URL into bytes."""
    if not url.startswith("data:") or "," not in url:
        return None
    header, _, data = url.partition(",")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(data)
        return unquote_to_bytes(data)
    except ValueError:
        return None


class InPageLog:
    """Reads the append-only capture log of one page.

    The log is read defensively: a missing log or a page that is mid-navigation
    reads as empty, and only "most recent entry wins" is assumed.
    """

    def __init__(self, page: Page) -> None:
        self.page = page

    async def size(self) -> int:
        try:
            return int(await self.page.evaluate(_SIZE_JS))
        except PlaywrightError:
            return 0

    async def entries(self, since: int = 0) -> list[dict[str, Any]]:
        try:
            return list(await self.page.evaluate(_READ_JS, since) or [])
        except PlaywrightError as exc:
            log.debug("Capture log unreadable: %s", exc)
            return []

    async def latest(self, since: int = 0) -> dict[str, Any] | None:
        entries = await self.entries(since)
        return entries[-1] if entries else None

    async def resolve(self, entry: dict[str, Any]) -> bytes | None:
        """Turn a log entry into the bytes it points at."""
        text = entry.get("text")
        if isinstance(text, str):
            return text.encode("utf-8")

        url = entry.get("url") or ""
        if url.startswith("data:"):
            return decode_data_url(url)
        try:
            if url.startswith("blob:"):
                fetched = await self.page.evaluate(_FETCH_BLOB_JS, url)
                return fetched.encode("utf-8") if isinstance(fetched, str) else None
            if url.startswith(("http://", "https://")):
                resp = await self.page.context.request.get(url)
                if not resp.ok:
                    log.info("In-page URL %s -> %d", url[:120], resp.status)
                    return None
                return await resp.body()
        except PlaywrightError as exc:
            log.info("In-page URL %s unreadable: %s", url[:120], exc)
        return None
