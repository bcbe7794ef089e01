"""Run controller: surfaces × locator strategies, stop at the first valid CSV.

For each surface: load, wait for the toolbar region, clear overlays; then for
each strategy: locate → arm-and-click → validate → persist. Every recoverable
failure is logged and the next strategy/surface is tried; nothing is retried
with the same parameters. Exhaustion leaves a screenshot behind and raises;
cancellation at the run deadline leaves the same screenshot before it
propagates.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from pydantic import BaseModel, ConfigDict

from exporter.arbiter import CaptureArbiter
from exporter.config import Settings
from exporter.diagnostics import save_screenshot, start_trace, stop_trace
from exporter.errors import ArtifactRejected, ExportExhausted
from exporter.instrumentation import install_instrumentation
from exporter.locator import (
    LocatorStrategy,
    close_transient_ui,
    default_strategies,
    dismiss_overlays,
    locate,
)
from exporter.session import new_session_context
from exporter.surfaces import Surface, enumerate_surfaces
from exporter.validator import Artifact, persist

log = logging.getLogger("runner")

EXHAUSTED = "No Export menu/button produced a CSV on any page tried"


class RunOutcome(BaseModel):
    """Final result of one run, built once at the end."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    artifact_path: Path | None = None
    channel: str | None = None
    surface: str | None = None
    strategy: str | None = None
    error: str | None = None
    screenshot_path: Path | None = None
    trace_path: Path | None = None
    attempts: list[dict[str, str]] = []


class ExportRunner:
    def __init__(
        self,
        settings: Settings,
        strategies: list[LocatorStrategy] | None = None,
        arbiter: CaptureArbiter | None = None,
        surfaces: list[Surface] | None = None,
    ) -> None:
        self.settings = settings
        self.surfaces = surfaces or enumerate_surfaces(
            settings.export_urls, settings.ready_selector,
        )
        self.strategies = strategies or default_strategies(settings.anchor_selector)
        self.arbiter = arbiter or CaptureArbiter.from_settings(settings)
        self.tracing = False
        self.page: Page | None = None
        self.visited: list[Surface] = []
        self.attempts: list[dict[str, str]] = []

    def _record(self, surface: Surface, strategy: str, result: str) -> None:
        self.attempts.append({"surface": surface.url, "strategy": strategy, "result": result})

    async def load(self, page: Page, surface: Surface) -> bool:
        """Navigate and wait (bounded) until the surface looks interactive."""
        nav_ms = self.settings.nav_timeout_s * 1000
        log.info("Loading %s (%s)", surface, surface.url)
        try:
            await page.goto(surface.url, wait_until="domcontentloaded", timeout=nav_ms)
        except PlaywrightError as exc:
            log.warning("Navigation to %s failed: %s", surface.url, exc)
            return False
        try:
            await page.wait_for_load_state("networkidle", timeout=nav_ms)
        except PlaywrightError:
            log.info("Network never went idle on %s", surface)
        try:
            await page.locator(surface.ready_selector).first.wait_for(
                state="visible", timeout=nav_ms,
            )
        except PlaywrightError:
            log.warning("Toolbar region not visible on %s, trying anyway", surface)
        await page.wait_for_timeout(self.settings.settle_ms)
        await dismiss_overlays(page)
        try:
            await page.evaluate("() => window.scrollTo(0, 0)")
        except PlaywrightError:
            pass
        return True

    async def attempt(
        self, page: Page, surface: Surface, strategy: LocatorStrategy,
    ) -> Artifact | None:
        """One strategy on the current page: locate, click, capture."""
        await close_transient_ui(page)
        target = await locate(page, strategy)
        if target is None:
            self._record(surface, strategy.name, "not found")
            return None
        log.info("Clicking %r found by %s", target.label, strategy.name)
        artifact = await self.arbiter.arm_and_click(page, target.click)
        if artifact is None:
            self._record(surface, strategy.name, "nothing captured")
        return artifact

    async def diagnose(self, context: BrowserContext) -> tuple[Path | None, Path | None]:
        """Leave a screenshot (and trace, when enabled) of the last page."""
        screenshot = await save_screenshot(
            self.page, self.settings.screenshot_path, context,
            fallback_url=self.surfaces[0].url,
        )
        trace = None
        if self.tracing:
            trace = await stop_trace(context, self.settings.trace_path)
            self.tracing = False
        return screenshot, trace

    async def run(self, context: BrowserContext) -> RunOutcome:
        """Run to the first saved artifact; diagnostics are kept on any failure.

        Cancellation (the caller's run deadline) still writes the screenshot
        before it propagates.
        """
        try:
            return await self._run(context)
        except asyncio.CancelledError:
            log.error("Run cancelled at the deadline")
            await self.diagnose(context)
            raise

    async def _run(self, context: BrowserContext) -> RunOutcome:
        self.page = await context.new_page()
        for surface in self.surfaces:
            if self.page.is_closed():
                self.page = await context.new_page()
            page = self.page
            self.visited.append(surface)
            if not await self.load(page, surface):
                self._record(surface, "-", "navigation failed")
                continue

            for strategy in self.strategies:
                artifact = await self.attempt(page, surface, strategy)
                if artifact is None:
                    continue
                try:
                    path = persist(artifact, self.settings.output_path)
                except (ArtifactRejected, OSError) as exc:
                    log.warning("Could not keep %s capture: %s", artifact.channel.value, exc)
                    self._record(surface, strategy.name, "rejected")
                    continue
                self._record(surface, strategy.name, "ok")
                if self.tracing:
                    await stop_trace(context, None)
                    self.tracing = False
                return RunOutcome(
                    ok=True,
                    artifact_path=path,
                    channel=artifact.channel.value,
                    surface=surface.url,
                    strategy=strategy.name,
                    attempts=self.attempts,
                )
            log.warning("No strategy produced a CSV on %s", surface)

        log.error(EXHAUSTED)
        screenshot, trace = await self.diagnose(context)
        outcome = RunOutcome(
            ok=False,
            error=EXHAUSTED,
            screenshot_path=screenshot,
            trace_path=trace,
            attempts=self.attempts,
        )
        raise ExportExhausted(EXHAUSTED, outcome)


async def export(settings: Settings) -> RunOutcome:
    """Launch Chromium, attach the session and run the export."""
    launch_args = []
    if sys.platform.startswith("linux"):
        launch_args = ["--no-sandbox", "--disable-dev-shm-usage"]

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=settings.headless, args=launch_args)
        try:
            context = await new_session_context(browser, settings)
            await install_instrumentation(context)
            runner = ExportRunner(settings)
            if settings.trace:
                runner.tracing = await start_trace(context)
            return await runner.run(context)
        finally:
            await browser.close()
