from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable, Iterable, Sequence

from ..domain import Sample, Ticker
from ..drivers.base import PageDriver, PageHandle
from ..errors import ExtractionFailure
from .numbers import finite_percent, parse_percent
from .strategies import CHANGE_SELECTORS, ExtractionStrategy, guarded_call, default_strategies

logger = logging.getLogger(__name__)


class Extractor:
    """Turn a page handle into a :class:`Sample` using ordered strategies.

    Strategies are tried in order and the first one that resolves a positive
    value wins; its name is recorded as the sample ``origin``. The change
    percentage comes from the winning strategy when it carries one, otherwise
    from the change selectors, and defaults to zero. When no strategy resolves
    a value :class:`ExtractionFailure` is raised; a zero-valued sample is never
    produced.
    """

    def __init__(
        self,
        driver: PageDriver,
        strategies: Iterable[ExtractionStrategy] | None = None,
        *,
        change_selectors: Sequence[str] = CHANGE_SELECTORS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._driver = driver
        self._strategies = list(strategies) if strategies is not None else default_strategies()
        self._change_selectors = tuple(change_selectors)
        self._clock = clock
        if not self._strategies:
            raise ValueError("at least one extraction strategy is required")

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def extract(self, handle: PageHandle, ticker: Ticker) -> Sample:
        attempted: list[str] = []
        for strategy in self._strategies:
            attempted.append(strategy.name)
            reading = await strategy.attempt(self._driver, handle)
            if reading is None:
                continue
            change = finite_percent(reading.change_percent)
            if change is None:
                change = await self._read_change(handle)
            return Sample(
                ticker=ticker,
                value=reading.value,
                change_percent=change if change is not None else Decimal("0"),
                observed_at=self._clock(),
                origin=strategy.name,
            )
        raise ExtractionFailure(ticker, attempted)

    async def _read_change(self, handle: PageHandle) -> Decimal | None:
        for selector in self._change_selectors:
            text = await guarded_call("change", self._driver.read_field(handle, selector))
            change = finite_percent(parse_percent(text))
            if change is not None:
                return change
        return None
