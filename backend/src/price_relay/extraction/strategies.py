"""Value extraction strategies tried in priority order by the extractor."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol, Sequence

from ..drivers.base import PageDriver, PageHandle
from ..errors import DriverUnavailable
from .numbers import (
    PRICE_PATTERN,
    coerce_decimal,
    parse_decimal,
    parse_percent,
    positive_price,
)

logger = logging.getLogger(__name__)

PRICE_SELECTORS: tuple[str, ...] = (
    "[data-symbol-last]",
    '[class*="last-"][class*="price"]',
    '[class*="Last-"][class*="price"]',
    ".tv-symbol-header__last-price",
    ".js-symbol-last",
    '[data-field="last_price"]',
    ".tv-category-header__price-line .tv-category-header__price",
    ".tv-symbol-price-quote__value",
)

CHANGE_SELECTORS: tuple[str, ...] = (
    "[data-symbol-change-pt]",
    '[class*="change"][class*="percent"]',
    '[class*="Change"][class*="percent"]',
    ".tv-symbol-header__change--percent",
    ".js-symbol-change-pt",
    ".tv-category-header__change-percent",
    ".tv-symbol-price-quote__change-percent",
)

SCRIPT_CONTEXT_PROBE = """() => {
  const tv = window.TradingView;
  if (tv && tv.symbol) {
    return {price: tv.symbol.last, change: tv.symbol.change_percent};
  }
  return null;
}"""

TEXT_NODES_PROBE = """() => {
  const out = [];
  for (const el of document.querySelectorAll('body *')) {
    if (el.children.length) continue;
    const text = (el.textContent || '').trim();
    if (!text || text.length > 64) continue;
    const parent = el.parentElement ? (el.parentElement.textContent || '') : '';
    out.push({text: text, context: parent.slice(0, 256)});
    if (out.length >= %(limit)d) break;
  }
  return out;
}"""

TITLE_PROBE = "() => document.title"


@dataclass(frozen=True)
class Reading:
    value: Decimal
    change_percent: Decimal | None = None


class ExtractionStrategy(Protocol):
    name: str

    async def attempt(self, driver: PageDriver, handle: PageHandle) -> Reading | None:
        ...


async def guarded_call(name: str, call) -> Any:
    """Await a driver call; anything but a driver outage counts as "no data"."""

    try:
        return await call
    except (asyncio.CancelledError, DriverUnavailable):
        raise
    except Exception as exc:
        logger.debug("%s: driver call failed: %s", name, exc)
        return None


@dataclass(frozen=True)
class SelectorStrategy:
    """Read known field markers, first parseable positive value wins."""

    selectors: Sequence[str] = PRICE_SELECTORS
    name: str = "selector"

    async def attempt(self, driver: PageDriver, handle: PageHandle) -> Reading | None:
        for selector in self.selectors:
            text = await guarded_call(self.name, driver.read_field(handle, selector))
            value = positive_price(parse_decimal(text))
            if value is not None:
                logger.debug("%s: %s matched %s", self.name, selector, value)
                return Reading(value=value)
        return None


@dataclass(frozen=True)
class ScriptContextStrategy:
    """Read price/change from a global data object exposed by the page."""

    probe: str = SCRIPT_CONTEXT_PROBE
    name: str = "script_context"

    async def attempt(self, driver: PageDriver, handle: PageHandle) -> Reading | None:
        payload = await guarded_call(self.name, driver.evaluate_script(handle, self.probe))
        if not isinstance(payload, Mapping):
            return None
        value = positive_price(coerce_decimal(payload.get("price")))
        if value is None:
            return None
        return Reading(value=value, change_percent=coerce_decimal(payload.get("change")))


@dataclass(frozen=True)
class TextScanStrategy:
    """Scan text-bearing nodes for a currency-like figure in a plausible range."""

    min_value: Decimal = Decimal("0.01")
    max_value: Decimal = Decimal("1000000")
    node_limit: int = 5000
    name: str = "text_scan"

    async def attempt(self, driver: PageDriver, handle: PageHandle) -> Reading | None:
        probe = TEXT_NODES_PROBE % {"limit": self.node_limit}
        nodes = await guarded_call(self.name, driver.evaluate_script(handle, probe))
        if not isinstance(nodes, list):
            return None
        for text, context in _iter_nodes(nodes):
            match = PRICE_PATTERN.search(text)
            if match is None:
                continue
            value = parse_decimal(match.group(1))
            if value is None or not (self.min_value <= value <= self.max_value):
                continue
            price = positive_price(value)
            if price is None:
                continue
            return Reading(value=price, change_percent=parse_percent(context, signed=True))
        return None


@dataclass(frozen=True)
class TitleStrategy:
    probe: str = TITLE_PROBE
    name: str = "title"

    async def attempt(self, driver: PageDriver, handle: PageHandle) -> Reading | None:
        title = await guarded_call(self.name, driver.evaluate_script(handle, self.probe))
        if not isinstance(title, str):
            return None
        match = PRICE_PATTERN.search(title)
        if match is None:
            return None
        value = positive_price(parse_decimal(match.group(1)))
        return Reading(value=value) if value is not None else None


def _iter_nodes(nodes: Iterable[Any]) -> Iterable[tuple[str, str]]:
    for node in nodes:
        if isinstance(node, str):
            yield node, node
        elif isinstance(node, Mapping):
            text = str(node.get("text") or "")
            yield text, str(node.get("context") or text)


def default_strategies(
    *, min_value: float | Decimal = Decimal("0.01"), max_value: float | Decimal = Decimal("1000000")
) -> list[ExtractionStrategy]:
    return [
        SelectorStrategy(),
        ScriptContextStrategy(),
        TextScanStrategy(min_value=Decimal(str(min_value)), max_value=Decimal(str(max_value))),
        TitleStrategy(),
    ]
