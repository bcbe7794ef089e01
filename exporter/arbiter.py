"""Race the four ways an exported file can reach us and keep one winner.

Channels, armed before the click:

  FileDownload     the browser's download event (longest budget)
  PopupDocument    a new tab/window opened by the click (short budget)
  NetworkResponse  a response that looks like a file (content-type,
                   attachment disposition or an export-ish URL)
  InPageObject     the injected capture log (blob/data URLs, download
                   anchors, window.open)

Every observer validates what it captures and keeps listening within its
budget when the payload is not a table. The first valid payload wins; the
other observers are cancelled and anything they opened is closed.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable

from playwright.async_api import Download, Locator, Page, Response
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from exporter.instrumentation import InPageLog
from exporter.locator import first_visible
from exporter.patterns import CONFIRM_NAME, DIALOG_SELECTOR, FORMAT_CHOICES
from exporter.validator import Artifact, CaptureChannel, validate

log = logging.getLogger("arbiter")

Trigger = Callable[[], Awaitable[Any]]

EXPORT_CONTENT_TYPES = (
    "text/csv",
    "application/csv",
    "text/comma-separated-values",
    "text/tab-separated-values",
    "application/octet-stream",
    "application/vnd.ms-excel",
    "spreadsheetml",
)
EXPORT_URL_HINT = re.compile(r"(export|download|csv)", re.I)
IGNORED_RESOURCE_TYPES = ("script", "stylesheet", "image", "font", "media")

# Tie-break when several channels settle in the same tick.
CHANNEL_PRIORITY = (
    CaptureChannel.FILE_DOWNLOAD,
    CaptureChannel.NETWORK_RESPONSE,
    CaptureChannel.POPUP_DOCUMENT,
    CaptureChannel.IN_PAGE_OBJECT,
)


def is_export_response(url: str, headers: dict[str, str]) -> bool:
    """Does a response look like it carries the exported file?"""
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    disposition = headers.get("content-disposition", "").lower()
    if "attachment" in disposition:
        return True
    content_type = headers.get("content-type", "").lower()
    if any(t in content_type for t in EXPORT_CONTENT_TYPES):
        return True
    return EXPORT_URL_HINT.search(url or "") is not None


def _response_predicate(response: Response) -> bool:
    try:
        if response.request.resource_type in IGNORED_RESOURCE_TYPES:
            return False
    except PlaywrightError:
        pass
    return is_export_response(response.url, response.headers)


def _remaining(deadline: float) -> float:
    return deadline - asyncio.get_running_loop().time()


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------

class Observer:
    """One capture channel. ``arm`` runs before the click, ``observe`` races."""

    channel: CaptureChannel

    def __init__(self, budget_s: float) -> None:
        self.budget_s = budget_s

    async def arm(self, page: Page) -> None:
        pass

    async def observe(self, page: Page) -> Artifact | None:
        raise NotImplementedError

    async def discard(self) -> None:
        """Release anything this observer opened."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(budget_s={self.budget_s})"


async def _read_download(download: Download) -> bytes | None:
    """Bytes of a finished download; the temporary file is always deleted."""
    name = download.suggested_filename
    log.info("Download started: %s", name)
    try:
        path = await download.path()
        return Path(path).read_bytes()
    except (PlaywrightError, OSError, TypeError) as exc:
        log.info("Download %s unreadable: %s", name, exc)
        return None
    finally:
        try:
            await download.delete()
        except PlaywrightError:
            pass


class DownloadObserver(Observer):
    channel = CaptureChannel.FILE_DOWNLOAD

    async def observe(self, page: Page) -> Artifact | None:
        deadline = asyncio.get_running_loop().time() + self.budget_s
        while _remaining(deadline) > 0:
            try:
                download = await page.wait_for_event(
                    "download", timeout=_remaining(deadline) * 1000,
                )
            except PlaywrightTimeout:
                return None
            data = await _read_download(download)
            if data is None:
                continue
            artifact = validate(data, self.channel, source=download.suggested_filename)
            if artifact is not None:
                return artifact
        return None


class PopupObserver(Observer):
    """New tabs opened by the click.

    The popup's document is read first. A popup that only hands over a file
    (``about:blank`` or a one-time link) fires its own download event, which
    is waited for up to ``download_grace_s`` before the popup is closed.
    """

    channel = CaptureChannel.POPUP_DOCUMENT

    def __init__(self, budget_s: float, download_grace_s: float = 3.0) -> None:
        super().__init__(budget_s)
        self.download_grace_s = download_grace_s
        self.pages: list[Page] = []

    async def arm(self, page: Page) -> None:
        self.pages = []

    async def _read(self, popup: Page) -> bytes | str | None:
        try:
            await popup.wait_for_load_state("domcontentloaded", timeout=self.budget_s * 1000)
        except PlaywrightError:
            pass
        url = popup.url
        if url.startswith(("http://", "https://")):
            resp = await popup.context.request.get(url)
            if resp.ok:
                body = await resp.body()
                if validate(body, self.channel, source=url) is not None:
                    return body
        return await popup.evaluate("() => document.body ? document.body.innerText : ''")

    async def observe(self, page: Page) -> Artifact | None:
        deadline = asyncio.get_running_loop().time() + self.budget_s
        while _remaining(deadline) > 0:
            try:
                popup = await page.context.wait_for_event(
                    "page", timeout=_remaining(deadline) * 1000,
                )
            except PlaywrightTimeout:
                return None
            self.pages.append(popup)
            log.info("Popup opened: %s", popup.url[:120])
            # Listen before reading so an early download is not missed.
            pending = asyncio.create_task(self._download(popup, max(_remaining(deadline), 0)))
            try:
                artifact = await self._capture(popup, pending)
            finally:
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
                await self._close(popup)
            if artifact is not None:
                return artifact
        return None

    async def _download(self, popup: Page, timeout_s: float) -> Artifact | None:
        try:
            download = await popup.wait_for_event("download", timeout=timeout_s * 1000)
        except PlaywrightError:
            return None
        data = await _read_download(download)
        if data is None:
            return None
        return validate(data, CaptureChannel.FILE_DOWNLOAD, source=download.suggested_filename)

    async def _capture(self, popup: Page, pending: asyncio.Task) -> Artifact | None:
        try:
            data = await self._read(popup)
        except PlaywrightError as exc:
            log.info("Popup unreadable: %s", exc)
            data = None
        if data:
            artifact = validate(data, self.channel, source=popup.url)
            if artifact is not None:
                return artifact
        done, _ = await asyncio.wait({pending}, timeout=self.download_grace_s)
        return pending.result() if done else None

    async def _close(self, popup: Page) -> None:
        try:
            if not popup.is_closed():
                await popup.close()
        except PlaywrightError:
            pass

    async def discard(self) -> None:
        for popup in self.pages:
            await self._close(popup)
        self.pages = []


class ResponseObserver(Observer):
    channel = CaptureChannel.NETWORK_RESPONSE

    async def observe(self, page: Page) -> Artifact | None:
        deadline = asyncio.get_running_loop().time() + self.budget_s
        while _remaining(deadline) > 0:
            try:
                response = await page.wait_for_event(
                    "response",
                    predicate=_response_predicate,
                    timeout=_remaining(deadline) * 1000,
                )
            except PlaywrightTimeout:
                return None
            log.info("Candidate response %s -> %d", response.url[:140], response.status)
            if not response.ok:
                continue
            try:
                body = await response.body()
            except PlaywrightError as exc:
                # Bodies of responses turned into downloads are not readable.
                log.info("Response body unavailable: %s", exc)
                continue
            artifact = validate(body, self.channel, source=response.url)
            if artifact is not None:
                return artifact
        return None


class InPageObserver(Observer):
    """Polls the injected capture log for entries added after arming."""

    channel = CaptureChannel.IN_PAGE_OBJECT

    def __init__(
        self,
        budget_s: float,
        interval_s: float = 0.25,
        reader: Callable[[Page], InPageLog] = InPageLog,
    ) -> None:
        super().__init__(budget_s)
        self.interval_s = interval_s
        self.reader = reader
        self.log: InPageLog | None = None
        self.since = 0
        self.rejected: set[str] = set()

    async def arm(self, page: Page) -> None:
        self.log = self.reader(page)
        self.since = await self.log.size()
        self.rejected = set()

    async def check(self) -> Artifact | None:
        """Look at the most recent entry once."""
        if self.log is None:
            return None
        entry = await self.log.latest(self.since)
        if not entry:
            return None
        key = f"{entry.get('kind')}|{entry.get('url')}|{len(entry.get('text') or '')}"
        if key in self.rejected:
            return None
        data = await self.log.resolve(entry)
        if data is None:
            # Blob text may still be loading; look again on the next tick.
            return None
        artifact = validate(data, self.channel, source=entry.get("filename") or entry.get("url"))
        if artifact is None:
            self.rejected.add(key)
        return artifact

    async def poll(self, window_s: float) -> Artifact | None:
        deadline = asyncio.get_running_loop().time() + window_s
        while True:
            artifact = await self.check()
            if artifact is not None:
                return artifact
            if _remaining(deadline) <= 0:
                return None
            await asyncio.sleep(min(self.interval_s, max(_remaining(deadline), 0)))

    async def observe(self, page: Page) -> Artifact | None:
        return await self.poll(self.budget_s)


# ---------------------------------------------------------------------------
# Format-choice dialog
# ---------------------------------------------------------------------------

class FormatDialog:
    """A modal asking which file format / scope to export."""

    async def find(self, page: Page) -> Locator | None:
        try:
            return await first_visible(page.locator(DIALOG_SELECTOR), limit=5)
        except PlaywrightError:
            return None

    async def choose(self, page: Page, dialog: Locator) -> bool:
        """Pick a CSV-like option (Excel-like if no CSV) and confirm."""
        clicked = False
        for pattern in FORMAT_CHOICES:
            option = None
            for query in (
                dialog.get_by_role("radio", name=pattern),
                dialog.get_by_role("option", name=pattern),
                dialog.get_by_role("button", name=pattern),
                dialog.get_by_text(pattern),
            ):
                option = await first_visible(query, limit=3)
                if option is not None:
                    break
            if option is not None:
                log.info("Choosing format option matching %s", pattern.pattern)
                await option.click(timeout=5_000)
                clicked = True
                break

        confirm = await first_visible(dialog.get_by_role("button", name=CONFIRM_NAME), limit=3)
        if confirm is not None and await confirm.is_enabled():
            log.info("Confirming dialog")
            await confirm.click(timeout=5_000)
            clicked = True
        return clicked


# ---------------------------------------------------------------------------
# Arbiter
# ---------------------------------------------------------------------------

class CaptureArbiter:
    """Arms the observers, fires the click and commits to at most one Artifact."""

    def __init__(
        self,
        observers: list[Observer] | None = None,
        dialog: FormatDialog | None = None,
        dialog_grace_s: float = 2.0,
        poll_window_s: float = 5.0,
    ) -> None:
        self.observers = observers if observers is not None else [
            DownloadObserver(120.0),
            PopupObserver(10.0),
            ResponseObserver(60.0),
            InPageObserver(15.0),
        ]
        self.dialog = dialog or FormatDialog()
        self.dialog_grace_s = dialog_grace_s
        self.poll_window_s = poll_window_s

    @classmethod
    def from_settings(cls, settings: Any) -> "CaptureArbiter":
        return cls(
            observers=[
                DownloadObserver(settings.download_timeout_s),
                PopupObserver(settings.popup_timeout_s),
                ResponseObserver(settings.response_timeout_s),
                InPageObserver(settings.inpage_timeout_s, settings.poll_interval_s),
            ],
            dialog_grace_s=settings.dialog_grace_s,
            poll_window_s=settings.poll_window_s,
        )

    async def _arm(self, page: Page) -> dict[asyncio.Task, Observer]:
        for observer in self.observers:
            await observer.arm(page)
        tasks = {
            asyncio.create_task(observer.observe(page)): observer
            for observer in self.observers
        }
        # Let every observer register its waiter before the click goes out.
        await asyncio.sleep(0)
        return tasks

    async def _cancel(self, tasks: dict[asyncio.Task, Observer]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for observer in self.observers:
            await observer.discard()

    async def _race(
        self,
        tasks: dict[asyncio.Task, Observer],
        timeout: float | None,
    ) -> Artifact | None:
        """Wait until one task yields an Artifact, all give up, or ``timeout``.

        Finished tasks are removed from ``tasks``; unfinished ones stay armed.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while tasks:
            wait_for = None if deadline is None else max(deadline - loop.time(), 0)
            done, _ = await asyncio.wait(
                set(tasks), timeout=wait_for, return_when=asyncio.FIRST_COMPLETED,
            )
            if not done:
                return None
            winners: list[Artifact] = []
            for task in done:
                tasks.pop(task)
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    if isinstance(exc, PlaywrightError):
                        log.info("Observer failed: %s", exc)
                        continue
                    raise exc
                if task.result() is not None:
                    winners.append(task.result())
            if winners:
                winners.sort(key=lambda a: CHANNEL_PRIORITY.index(a.channel))
                for loser in winners[1:]:
                    log.info("Discarding simultaneous %s capture", loser.channel.value)
                return winners[0]
        return None

    async def arm_and_click(self, page: Page, trigger: Trigger) -> Artifact | None:
        """Arm all channels, run ``trigger`` and return the single winning capture."""
        tasks = await self._arm(page)
        try:
            try:
                await trigger()
            except PlaywrightError as exc:
                log.info("Export click failed: %s", exc)
                return None

            artifact = await self._race(tasks, self.dialog_grace_s)
            if artifact is not None:
                return artifact

            dialog = await self.dialog.find(page)
            if dialog is not None:
                log.info("Dialog open after click, looking for a format choice")
                await self._cancel(tasks)
                tasks = await self._arm(page)
                try:
                    chosen = await self.dialog.choose(page, dialog)
                except PlaywrightError as exc:
                    log.info("Format choice failed: %s", exc)
                    chosen = False
                if not chosen:
                    log.info("Dialog offered nothing to choose")

            artifact = await self._race(tasks, None)
            if artifact is not None:
                return artifact
        finally:
            await self._cancel(tasks)

        return await self._poll_in_page()

    async def _poll_in_page(self) -> Artifact | None:
        """Client-side objects can lag the click; give the log a last look."""
        for observer in self.observers:
            if isinstance(observer, InPageObserver):
                log.info("No channel fired, polling in-page log for %.1fs", self.poll_window_s)
                artifact = await observer.poll(self.poll_window_s)
                if artifact is not None:
                    return artifact
        log.info("Nothing captured")
        return None
