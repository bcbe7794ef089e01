"""Candidate pages believed to host the export control.

Pure configuration resolution: nothing here touches the network or a page.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict

from exporter.config import DASHBOARD, READY_SELECTOR

log = logging.getLogger("surfaces")

# Ordered: the price list exposes the most complete column set.
DEFAULT_URLS = (
    (f"{DASHBOARD}/goods/price", "price list"),          # รายการราคา
    (f"{DASHBOARD}/goods/items", "items"),               # สินค้า
    (f"{DASHBOARD}/inventory_by_items", "stock by item"),  # สต็อกตามสินค้า
)

# Commas and semicolons inside a URL (hash-route query strings) are kept;
# they separate entries only when another address follows.
_SPLIT = re.compile(r"\s+|[,;]+(?=https?://)", re.I)


class Surface(BaseModel):
    """A page address plus the region that signals it finished loading."""

    model_config = ConfigDict(frozen=True)

    url: str
    ready_selector: str = READY_SELECTOR
    label: str = ""

    def __str__(self) -> str:
        return self.label or self.url


def default_surfaces(ready_selector: str = READY_SELECTOR) -> list[Surface]:
    return [
        Surface(url=url, ready_selector=ready_selector, label=label)
        for url, label in DEFAULT_URLS
    ]


def parse_override(raw: str | list[str] | None) -> list[str]:
    """Split an operator-supplied list into absolute http(s) addresses.

    Order is kept, duplicates and anything that is not an absolute URL are
    dropped.
    """
    if not raw:
        return []
    items = raw if isinstance(raw, list) else _SPLIT.split(raw)
    urls: list[str] = []
    for item in items:
        item = (item or "").strip().rstrip(",;")
        if not item:
            continue
        if not re.match(r"^https?://\S+$", item, re.I):
            log.warning("Ignoring malformed surface %r", item)
            continue
        if item not in urls:
            urls.append(item)
    return urls


def enumerate_surfaces(
    override: str | list[str] | None = None,
    ready_selector: str = READY_SELECTOR,
) -> list[Surface]:
    """Return the ordered, non-empty list of surfaces to try.

    A usable override replaces the defaults entirely; it is never merged.
    """
    urls = parse_override(override)
    if override and not urls:
        log.warning("Surface override is empty or malformed, using defaults")
    if not urls:
        return default_surfaces(ready_selector)
    return [
        Surface(url=url, ready_selector=ready_selector, label=f"override #{i}")
        for i, url in enumerate(urls, 1)
    ]
