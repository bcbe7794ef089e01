"""Find the "export" control on an unknown, internationalized page.

Strategies are tried in a fixed order of decreasing precision:

  1. SemanticMatch     role button/link/menuitem + multilingual accessible name
  2. FreeTextMatch     visible text anywhere, climb to the nearest clickable
  3. OverflowMenuMatch open a "more actions" menu, free-text inside it
  4. ToolbarSweep      click toolbar children around a stable anchor

3 and 4 click things speculatively. Only a menu region that appeared after
the click is searched, and a failed step closes it again and checks that it
is gone. Targets are resolved per attempt and never cached.
"""

from __future__ import annotations

import logging
import uuid

from playwright.async_api import Locator, Page
from playwright.async_api import Error as PlaywrightError

from exporter.patterns import (
    ANCHOR_NAME,
    DESTRUCTIVE_PATTERN,
    DISMISS_NAME,
    EXPORT_NAME,
    EXPORT_PATTERN,
    MENU_REGION_SELECTOR,
    MORE_NAME,
    OVERFLOW_SELECTORS,
    is_export_label,
)

log = logging.getLogger("locator")

MAX_ANCESTOR_CLIMB = 4     # levels above the text node's element
MAX_CANDIDATES = 10        # matches inspected per query
MAX_SWEEP = 8              # toolbar children tried by the sweep
MENU_WAIT_MS = 800         # time for a menu to render after a click
CLICK_TIMEOUT_MS = 5_000

MARK_ATTR = "data-export-target"
REGION_ATTR = "data-export-region"
INTERACTIVE_SELECTOR = (
    "button, a[href], [role='button'], [role='link'], [role='menuitem'], "
    "[tabindex]:not([tabindex='-1'])"
)

# Marks the nearest clickable element at or above `el` (at most maxLevels up).
_CLIMB_JS = """
(el, args) => {
  const [maxLevels, attr, token] = args;
  const roles = ['button', 'link', 'menuitem', 'menuitemradio', 'option', 'tab'];
  const clickable = (n) => {
    const tag = n.tagName.toLowerCase();
    if (tag === 'button' || tag === 'summary') return !n.disabled;
    if (tag === 'a' && n.hasAttribute('href')) return true;
    if (roles.includes((n.getAttribute('role') || '').toLowerCase())) return true;
    if (n.hasAttribute('onclick') || n.hasAttribute('ng-click')) return true;
    const tabindex = n.getAttribute('tabindex');
    return tabindex !== null && parseInt(tabindex, 10) >= 0;
  };
  let node = el;
  for (let level = 0; node && node.nodeType === 1 && level <= maxLevels; level++) {
    if (clickable(node)) {
      node.setAttribute(attr, token);
      return true;
    }
    node = node.parentElement;
  }
  return false;
}
"""

# Marks the nearest ancestor of `el` holding at least `minChildren` controls.
_TOOLBAR_JS = """
(el, args) => {
  const [attr, token, selector, minChildren, maxLevels] = args;
  let node = el.parentElement;
  for (let level = 0; node && level < maxLevels; level++) {
    if (node.querySelectorAll(selector).length >= minChildren) {
      node.setAttribute(attr, token);
      return true;
    }
    node = node.parentElement;
  }
  return false;
}
"""

# Tags every visible menu region not already tagged `skip` with `token`.
_MARK_REGIONS_JS = """
(args) => {
  const [selector, attr, token, skip] = args;
  const shown = (el) => {
    const style = getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  };
  let marked = 0;
  for (const el of document.querySelectorAll(selector)) {
    if (shown(el) && (skip === null || el.getAttribute(attr) !== skip)) {
      el.setAttribute(attr, token);
      marked++;
    }
  }
  return marked;
}
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _token() -> str:
    return uuid.uuid4().hex[:12]


def _marked(page: Page, token: str) -> Locator:
    return page.locator(f"[{MARK_ATTR}='{token}']").first


async def first_visible(locator: Locator, limit: int = MAX_CANDIDATES) -> Locator | None:
    count = await locator.count()
    for i in range(min(count, limit)):
        candidate = locator.nth(i)
        if await candidate.is_visible():
            return candidate
    return None


async def _label(locator: Locator) -> str:
    """Readable name of an element: its text, else its aria-label/title."""
    try:
        text = (await locator.inner_text(timeout=1_000)).strip()
        if text:
            return " ".join(text.split())
        for attr in ("aria-label", "title"):
            value = await locator.get_attribute(attr, timeout=1_000)
            if value:
                return value.strip()
    except PlaywrightError:
        pass
    return ""


async def _mark_regions(page: Page, token: str, skip: str | None = None) -> int:
    return int(await page.evaluate(
        _MARK_REGIONS_JS, [MENU_REGION_SELECTOR, REGION_ATTR, token, skip],
    ))


async def _new_region(page: Page, before: str) -> Locator | None:
    """A menu/overlay region that became visible after ``before`` was taken."""
    token = _token()
    if not await _mark_regions(page, token, before):
        return None
    return page.locator(f"[{REGION_ATTR}='{token}']").last


async def _is_open(region: Locator) -> bool:
    try:
        return await region.is_visible()
    except PlaywrightError:
        return False


async def close_region(page: Page, region: Locator, trigger: Locator | None = None) -> bool:
    """Close a menu and check it is gone: Escape, then its trigger, then the page body."""
    await close_transient_ui(page)
    if not await _is_open(region):
        return True
    if trigger is not None:
        try:
            await trigger.click(timeout=CLICK_TIMEOUT_MS)
            await page.wait_for_timeout(200)
        except PlaywrightError as exc:
            log.debug("Re-clicking menu trigger failed: %s", exc)
        if not await _is_open(region):
            return True
    try:
        await page.mouse.click(1, 1)
        await page.wait_for_timeout(200)
    except PlaywrightError as exc:
        log.debug("Body click failed: %s", exc)
    return not await _is_open(region)


async def _search_menu(page: Page, trigger: Locator, strategy: str) -> ActionTarget | None:
    """Click ``trigger``, look for export in what it opened, close it again if not."""
    before = _token()
    await _mark_regions(page, before)
    await trigger.click(timeout=CLICK_TIMEOUT_MS)
    await page.wait_for_timeout(MENU_WAIT_MS)
    region = await _new_region(page, before)
    if region is None:
        await close_transient_ui(page)
        return None
    target = await FreeTextMatch().find_in(page, region)
    if target is not None:
        return ActionTarget(target.locator, strategy, target.label)
    if not await close_region(page, region, trigger):
        log.warning("[%s] a menu stayed open after a failed step", strategy)
    return None


async def close_transient_ui(page: Page) -> None:
    """Send a dismiss signal so open menus/popovers do not leak into the next try."""
    try:
        await page.keyboard.press("Escape")
        await page.wait_for_timeout(200)
    except PlaywrightError as exc:
        log.debug("Escape failed: %s", exc)


async def dismiss_overlays(page: Page) -> None:
    """Close cookie banners and similar dialogs covering the toolbar."""
    candidates = [
        page.get_by_role("button", name=DISMISS_NAME),
        page.locator("button[aria-label*='Close' i]"),
    ]
    for loc in candidates:
        try:
            button = await first_visible(loc, limit=3)
            if button is not None:
                await button.click(timeout=1_000)
        except PlaywrightError:
            continue
    await close_transient_ui(page)


# ---------------------------------------------------------------------------
# Target
# ---------------------------------------------------------------------------

class ActionTarget:
    """The element chosen to receive the export click for this page snapshot."""

    def __init__(self, locator: Locator, strategy: str, label: str = "") -> None:
        self.locator = locator
        self.strategy = strategy
        self.label = label

    async def click(self) -> None:
        try:
            await self.locator.scroll_into_view_if_needed(timeout=CLICK_TIMEOUT_MS)
        except PlaywrightError:
            pass
        await self.locator.click(timeout=CLICK_TIMEOUT_MS)

    def __repr__(self) -> str:
        return f"ActionTarget(strategy={self.strategy!r}, label={self.label!r})"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class LocatorStrategy:
    """One rule for finding the export control."""

    name = "strategy"

    async def find(self, page: Page) -> ActionTarget | None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SemanticMatch(LocatorStrategy):
    name = "semantic"
    roles = ("button", "link", "menuitem")

    async def find(self, page: Page) -> ActionTarget | None:
        for role in self.roles:
            candidate = await first_visible(page.get_by_role(role, name=EXPORT_NAME))
            if candidate is not None:
                return ActionTarget(candidate, self.name, await _label(candidate))
        return None


class FreeTextMatch(LocatorStrategy):
    """Text match anywhere, then the nearest clickable ancestor.

    A match with no clickable element within ``MAX_ANCESTOR_CLIMB`` levels is
    discarded.
    """

    name = "free-text"

    async def find(self, page: Page) -> ActionTarget | None:
        return await self.find_in(page, None)

    async def find_in(self, page: Page, scope: Locator | None) -> ActionTarget | None:
        root = scope if scope is not None else page
        texts = root.get_by_text(EXPORT_PATTERN)
        count = await texts.count()
        for i in range(min(count, MAX_CANDIDATES)):
            element = texts.nth(i)
            if not await element.is_visible():
                continue
            token = _token()
            if await element.evaluate(_CLIMB_JS, [MAX_ANCESTOR_CLIMB, MARK_ATTR, token]):
                target = _marked(page, token)
                label = await _label(target)
                if not is_export_label(label):
                    label = await _label(element)
                return ActionTarget(target, self.name, label)
        return None


class OverflowMenuMatch(LocatorStrategy):
    """Open a "more actions" control and look for export inside what it reveals."""

    name = "overflow-menu"
    max_menus = 3

    async def find(self, page: Page) -> ActionTarget | None:
        queries = [page.get_by_role("button", name=MORE_NAME)]
        queries += [page.locator(sel) for sel in OVERFLOW_SELECTORS]

        tried = 0
        for query in queries:
            if tried >= self.max_menus:
                break
            try:
                trigger = await first_visible(query, limit=3)
            except PlaywrightError:
                continue
            if trigger is None:
                continue
            tried += 1
            log.info("[%s] opening %r", self.name, await _label(trigger) or "icon button")
            try:
                target = await _search_menu(page, trigger, self.name)
            except PlaywrightError as exc:
                log.info("[%s] menu attempt failed: %s", self.name, exc)
                await close_transient_ui(page)
                continue
            if target is not None:
                return target
        return None


class ToolbarSweep(LocatorStrategy):
    """Last resort: click toolbar controls one by one looking for an export menu.

    The toolbar is the nearest container around an always-present anchor
    (an "Import"/"Add item" control, a search box, or ``anchor_selector``).
    Children are tried middle-first because export-like controls cluster
    there. This is positional guessing and breaks with layout changes; a
    stable ``anchor_selector`` makes it far less fragile.
    """

    name = "toolbar-sweep"
    min_children = 2
    max_levels = 5

    def __init__(self, anchor_selector: str | None = None) -> None:
        self.anchor_selector = anchor_selector

    def __repr__(self) -> str:
        return f"ToolbarSweep(anchor_selector={self.anchor_selector!r})"

    async def _anchor(self, page: Page) -> Locator | None:
        queries = []
        if self.anchor_selector:
            queries.append(page.locator(self.anchor_selector))
        queries += [
            page.get_by_role("button", name=ANCHOR_NAME),
            page.get_by_role("link", name=ANCHOR_NAME),
            page.locator("input[type='search'], [role='searchbox']"),
        ]
        for query in queries:
            anchor = await first_visible(query, limit=3)
            if anchor is not None:
                return anchor
        return None

    @staticmethod
    def sweep_order(n: int) -> list[int]:
        """Indices 0..n-1 ordered by distance from the middle, left first on ties."""
        middle = (n - 1) / 2
        return sorted(range(n), key=lambda i: (abs(i - middle), i))

    async def find(self, page: Page) -> ActionTarget | None:
        anchor = await self._anchor(page)
        if anchor is None:
            return None
        token = _token()
        found = await anchor.evaluate(
            _TOOLBAR_JS,
            [MARK_ATTR, token, INTERACTIVE_SELECTOR, self.min_children, self.max_levels],
        )
        if not found:
            return None

        log.warning("[%s] falling back to positional toolbar guessing", self.name)
        toolbar = _marked(page, token)
        children = toolbar.locator(INTERACTIVE_SELECTOR)
        visible: list[int] = []
        for i in range(await children.count()):
            if await children.nth(i).is_visible():
                visible.append(i)

        for pos in self.sweep_order(len(visible))[:MAX_SWEEP]:
            child = children.nth(visible[pos])
            label = await _label(child)
            if DESTRUCTIVE_PATTERN.search(label) or ANCHOR_NAME.search(label):
                continue
            if is_export_label(label):
                return ActionTarget(child, self.name, label)

            url_before = page.url
            try:
                target = await _search_menu(page, child, self.name)
            except PlaywrightError as exc:
                log.info("[%s] child %d failed: %s", self.name, pos, exc)
                await close_transient_ui(page)
                target = None
            if target is not None:
                return target
            if page.url != url_before:
                log.info("[%s] child %d navigated away, going back", self.name, pos)
                try:
                    await page.go_back(wait_until="domcontentloaded")
                except PlaywrightError:
                    return None
        return None


def default_strategies(anchor_selector: str | None = None) -> list[LocatorStrategy]:
    """The ladder, most precise first."""
    return [
        SemanticMatch(),
        FreeTextMatch(),
        OverflowMenuMatch(),
        ToolbarSweep(anchor_selector),
    ]


async def locate(page: Page, strategy: LocatorStrategy) -> ActionTarget | None:
    """Run one strategy; "not found" and browser errors both yield None."""
    try:
        target = await strategy.find(page)
    except PlaywrightError as exc:
        log.info("[%s] failed: %s", strategy.name, exc)
        await close_transient_ui(page)
        return None
    if target is None:
        log.info("[%s] no export control", strategy.name)
    else:
        log.info("[%s] found %r", strategy.name, target.label)
    return target
