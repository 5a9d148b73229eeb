"""Synthetic price source for demos and tests.

Enabled only through ``Settings.simulation_mode``. It replaces both the page
driver and the extractor, and every sample it produces carries
``origin="simulated"``; the real extraction chain never falls back to it.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from .domain import Sample, Ticker
from .extraction.numbers import round_percent, round_price

logger = logging.getLogger(__name__)

SIMULATED_ORIGIN = "simulated"

# (substring, base price, spread)
BASE_PRICES: tuple[tuple[str, float, float], ...] = (
    ("BTC", 45000.0, 5000.0),
    ("ETH", 2800.0, 400.0),
    ("SOL", 150.0, 30.0),
    ("ADA", 0.85, 0.15),
    ("DOT", 12.0, 3.0),
    ("MATIC", 0.90, 0.20),
    ("LINK", 18.0, 4.0),
    ("UNI", 8.0, 2.0),
    ("AVAX", 35.0, 8.0),
    ("ATOM", 15.0, 3.0),
)
DEFAULT_BASE = (50.0, 20.0)
MAX_STEP = 0.005
TREND_PERSISTENCE = 0.6
PRICE_FLOOR = 0.01


@dataclass
class SimulatedPage:
    address: str
    price: float | None = None
    direction: int = 1
    closed: bool = False


class SimulatedPageDriver:
    """Page driver whose handles only carry random-walk state."""

    def __init__(self) -> None:
        self._open_pages = 0

    @property
    def open_pages(self) -> int:
        return self._open_pages

    async def start(self) -> None:
        logger.warning("Simulation mode: prices are synthetic, no page is loaded")

    async def close(self) -> None:
        return None

    async def open(self, address: str) -> SimulatedPage:
        self._open_pages += 1
        return SimulatedPage(address=address)

    async def read_field(self, handle: Any, selector: str) -> str | None:
        return None

    async def evaluate_script(self, handle: Any, probe: str) -> Any:
        return None

    async def close_page(self, handle: SimulatedPage) -> None:
        if not handle.closed:
            handle.closed = True
            self._open_pages -= 1


class SimulatedExtractor:
    """Random walk: moves of up to 0.5% that tend to keep their direction."""

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock

    def base_price(self, ticker: Ticker) -> float:
        base, spread = DEFAULT_BASE
        for needle, candidate, candidate_spread in BASE_PRICES:
            if needle in ticker:
                base, spread = candidate, candidate_spread
                break
        return base + (self._rng.random() - 0.5) * spread

    async def extract(self, handle: SimulatedPage, ticker: Ticker) -> Sample:
        if handle.price is None:
            base = self.base_price(ticker)
            variation = (self._rng.random() - 0.5) * 0.02
            price = base * (1 + variation)
            change = variation * 100
        else:
            base = handle.price
            if self._rng.random() >= TREND_PERSISTENCE:
                handle.direction = -handle.direction
            step = handle.direction * self._rng.random() * MAX_STEP * base
            price = max(base + step, PRICE_FLOOR)
            change = (price - base) / base * 100
        handle.price = price
        return Sample(
            ticker=ticker,
            value=round_price(Decimal(str(price))),
            change_percent=round_percent(Decimal(str(change))),
            observed_at=self._clock(),
            origin=SIMULATED_ORIGIN,
        )
