"""End-to-end run controller scenarios against a scripted fake back office.

The fake page records navigation; fake strategies decide where an export
control exists; clicking it plays back whatever the scripted app does
(download, format dialog, late in-page object, or nothing).
"""

import asyncio
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError

import export_csv
from exporter.arbiter import CaptureArbiter, InPageObserver, Observer
from exporter.config import Settings
from exporter.errors import ExportExhausted
from exporter.locator import ActionTarget, LocatorStrategy
from exporter.runner import EXHAUSTED, ExportRunner, RunOutcome
from exporter.surfaces import Surface
from exporter.validator import CaptureChannel, validate

CSV = b"Handle,SKU,Price\nA-1,001,10.50\n"

S1 = Surface(url="https://bo.test/#/goods/price", label="price list")
S2 = Surface(url="https://bo.test/#/goods/items", label="items")
S3 = Surface(url="https://bo.test/#/inventory_by_items", label="stock by item")


# ---------------------------------------------------------------------------
# Fake back office
# ---------------------------------------------------------------------------

class App:
    """Scripted reactions to export clicks, keyed by action name."""

    def __init__(self):
        self.events = {}
        self.payloads = {}
        self.dialog_open = False
        self.broken = set()
        self.clicks = []
        self.in_page = []

    def arm(self, channel):
        self.events[channel] = asyncio.Event()

    def fire(self, channel, payload, source=None):
        self.payloads[channel] = (payload, source)
        self.events[channel].set()

    def click(self, url, action):
        self.clicks.append((url, action))
        if action == "download":
            self.fire(CaptureChannel.FILE_DOWNLOAD, CSV, "inventory.csv")
        elif action == "dialog":
            self.dialog_open = True
        elif action == "late-blob":
            async def later():
                await asyncio.sleep(0.15)
                self.in_page.append({"kind": "object-url", "url": "blob:x", "text": CSV.decode()})
            asyncio.get_running_loop().create_task(later())
        elif action == "login-page":
            self.fire(CaptureChannel.NETWORK_RESPONSE, b"<html><body>Sign in</body></html>")


class FakeKeyboard:
    async def press(self, key):
        pass


class FakeLocator:
    def __init__(self, page, action=None):
        self.page = page
        self.action = action

    @property
    def first(self):
        return self

    async def wait_for(self, **kwargs):
        pass

    async def count(self):
        return 0

    async def scroll_into_view_if_needed(self, **kwargs):
        pass

    async def click(self, **kwargs):
        self.page.app.click(self.page.url, self.action)


class FakePage:
    def __init__(self, app):
        self.app = app
        self.url = "about:blank"
        self.visited = []
        self.keyboard = FakeKeyboard()

    async def goto(self, url, **kwargs):
        if url in self.app.broken:
            raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        self.url = url
        self.visited.append(url)

    async def wait_for_load_state(self, *args, **kwargs):
        pass

    def locator(self, selector):
        return FakeLocator(self)

    def get_by_role(self, role, **kwargs):
        return FakeLocator(self)

    async def wait_for_timeout(self, ms):
        await asyncio.sleep(0)

    async def evaluate(self, script, *args):
        return None

    def is_closed(self):
        return False

    async def screenshot(self, path, full_page=False):
        Path(path).write_bytes(b"\x89PNG fake")


class FakeContext:
    def __init__(self, app):
        self.page = FakePage(app)

    async def new_page(self):
        return self.page


class FakeStrategy(LocatorStrategy):
    """Finds a control on the surfaces listed in ``hits`` (url -> action)."""

    def __init__(self, name, hits=None):
        self.name = name
        self.hits = hits or {}
        self.calls = []

    async def find(self, page):
        self.calls.append(page.url)
        action = self.hits.get(page.url)
        if action is None:
            return None
        return ActionTarget(FakeLocator(page, action), self.name, "Export")


class AppObserver(Observer):
    def __init__(self, app, channel, budget_s=0.5):
        super().__init__(budget_s)
        self.app = app
        self.channel = channel

    async def arm(self, page):
        self.app.arm(self.channel)

    async def observe(self, page):
        try:
            await asyncio.wait_for(self.app.events[self.channel].wait(), self.budget_s)
        except asyncio.TimeoutError:
            return None
        payload, source = self.app.payloads[self.channel]
        return validate(payload, self.channel, source=source)


class AppDialog:
    def __init__(self, app):
        self.app = app

    async def find(self, page):
        return "format dialog" if self.app.dialog_open else None

    async def choose(self, page, dialog):
        self.app.dialog_open = False
        self.app.fire(CaptureChannel.NETWORK_RESPONSE, CSV, "https://bo.test/api/export/42")
        return True


class AppLog:
    def __init__(self, app):
        self.app = app

    async def size(self):
        return len(self.app.in_page)

    async def latest(self, since=0):
        tail = self.app.in_page[since:]
        return tail[-1] if tail else None

    async def resolve(self, entry):
        return entry["text"].encode("utf-8")


def _runner(app, tmp_path, strategies):
    arbiter = CaptureArbiter(
        observers=[
            AppObserver(app, CaptureChannel.FILE_DOWNLOAD),
            AppObserver(app, CaptureChannel.NETWORK_RESPONSE),
            InPageObserver(0.05, interval_s=0.02, reader=lambda page: AppLog(app)),
        ],
        dialog=AppDialog(app),
        dialog_grace_s=0.05,
        poll_window_s=0.5,
    )
    settings = Settings(outdir=tmp_path / "out", settle_ms=0, nav_timeout_s=1)
    return ExportRunner(settings, strategies=strategies, arbiter=arbiter, surfaces=[S1, S2, S3])


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

def test_free_text_hit_on_second_surface(tmp_path):
    app = App()
    semantic = FakeStrategy("semantic")
    free_text = FakeStrategy("free-text", {S2.url: "download"})
    runner = _runner(app, tmp_path, [semantic, free_text])
    context = FakeContext(app)

    outcome = asyncio.run(runner.run(context))

    assert outcome.ok
    assert outcome.channel == "FileDownload"
    assert outcome.surface == S2.url
    assert outcome.strategy == "free-text"
    assert outcome.artifact_path.read_bytes() == CSV
    assert context.page.visited == [S1.url, S2.url]
    assert semantic.calls == [S1.url, S2.url]
    assert app.clicks == [(S2.url, "download")]


def test_format_dialog_then_attachment_response(tmp_path):
    app = App()
    runner = _runner(app, tmp_path, [FakeStrategy("semantic", {S1.url: "dialog"})])

    outcome = asyncio.run(runner.run(FakeContext(app)))

    assert outcome.channel == "NetworkResponse"
    assert outcome.surface == S1.url
    assert (tmp_path / "out" / "inventory.csv").read_bytes() == CSV


def test_late_in_page_object(tmp_path):
    app = App()
    runner = _runner(app, tmp_path, [FakeStrategy("overflow-menu", {S1.url: "late-blob"})])

    outcome = asyncio.run(runner.run(FakeContext(app)))

    assert outcome.channel == "InPageObject"
    assert outcome.strategy == "overflow-menu"
    assert outcome.artifact_path.read_bytes() == CSV


def test_invalid_capture_moves_on(tmp_path):
    app = App()
    first = FakeStrategy("semantic", {S1.url: "login-page"})
    second = FakeStrategy("free-text", {S1.url: "download"})
    runner = _runner(app, tmp_path, [first, second])

    outcome = asyncio.run(runner.run(FakeContext(app)))

    assert outcome.strategy == "free-text"
    assert [a["result"] for a in outcome.attempts] == ["nothing captured", "ok"]


def test_navigation_failure_skips_surface(tmp_path):
    app = App()
    app.broken.add(S1.url)
    runner = _runner(app, tmp_path, [FakeStrategy("semantic", {S1.url: "download", S2.url: "download"})])

    outcome = asyncio.run(runner.run(FakeContext(app)))

    assert outcome.surface == S2.url
    assert outcome.attempts[0] == {"surface": S1.url, "strategy": "-", "result": "navigation failed"}


def test_exhaustion_leaves_screenshot(tmp_path):
    app = App()
    strategies = [FakeStrategy("semantic"), FakeStrategy("free-text")]
    runner = _runner(app, tmp_path, strategies)

    with pytest.raises(ExportExhausted) as info:
        asyncio.run(runner.run(FakeContext(app)))

    outcome = info.value.outcome
    assert str(info.value) == EXHAUSTED
    assert not outcome.ok
    assert outcome.screenshot_path == tmp_path / "out" / "error.png"
    assert outcome.screenshot_path.exists()
    assert len(outcome.attempts) == 6
    assert not (tmp_path / "out" / "inventory.csv").exists()
    assert app.clicks == []


# ---------------------------------------------------------------------------
# CLI exit codes
# ---------------------------------------------------------------------------

@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("EXPORT_OUTDIR", str(tmp_path / "out"))
    monkeypatch.delenv("EXPORT_URLS", raising=False)
    return tmp_path


def test_cli_exit_code_on_exhaustion(cli_env, monkeypatch):
    async def exhausted(settings):
        raise ExportExhausted(EXHAUSTED, RunOutcome(ok=False, error=EXHAUSTED))

    monkeypatch.setattr(export_csv, "export", exhausted)
    assert asyncio.run(export_csv.main([])) == 1


def test_cli_exit_code_on_success_and_url_override(cli_env, monkeypatch):
    seen = {}

    async def succeeded(settings):
        seen["urls"] = settings.export_urls
        return RunOutcome(ok=True, artifact_path=settings.output_path, channel="FileDownload")

    monkeypatch.setattr(export_csv, "export", succeeded)
    assert asyncio.run(export_csv.main([S2.url, S3.url])) == 0
    assert seen["urls"] == f"{S2.url} {S3.url}"


# ---------------------------------------------------------------------------
# Run deadline
# ---------------------------------------------------------------------------

class StuckStrategy(LocatorStrategy):
    """Never returns, like a capture waiting out a long download budget."""

    name = "semantic"

    async def find(self, page):
        await asyncio.sleep(60)


def test_deadline_still_leaves_screenshot(tmp_path):
    app = App()
    runner = _runner(app, tmp_path, [StuckStrategy()])

    async def go():
        await asyncio.wait_for(runner.run(FakeContext(app)), timeout=0.2)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(go())
    assert (tmp_path / "out" / "error.png").exists()
    assert runner.visited == [S1]


def test_cli_deadline_exit_code_and_screenshot(cli_env, monkeypatch):
    monkeypatch.setenv("RUN_TIMEOUT_S", "0.2")
    app = App()

    async def stuck(settings):
        runner = ExportRunner(settings, strategies=[StuckStrategy()], surfaces=[S1])
        return await runner.run(FakeContext(app))

    monkeypatch.setattr(export_csv, "export", stuck)
    assert asyncio.run(export_csv.main([])) == 1
    assert (cli_env / "out" / "error.png").exists()
