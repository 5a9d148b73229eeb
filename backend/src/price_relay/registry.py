"""Set of active monitors keyed by ticker."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict

from .domain import Ticker, normalize_ticker
from .drivers.base import PageDriver
from .monitor import Monitor, SampleSink, SampleSource, Throttle

logger = logging.getLogger(__name__)

AddressResolver = Callable[[Ticker], str]


class MonitorRegistry:
    """Add, remove and list monitored tickers.

    Structural changes for one ticker are serialised by a per-ticker lock, so
    at most one active monitor exists per ticker while page acquisition for
    different tickers proceeds concurrently.
    """

    def __init__(
        self,
        *,
        driver: PageDriver,
        extractor: SampleSource,
        sink: SampleSink,
        address_for: AddressResolver,
        interval: float = 1.0,
        stop_grace: float = 2.0,
        max_consecutive_failures: int | None = None,
        throttle: Throttle | None = None,
    ) -> None:
        self._driver = driver
        self._extractor = extractor
        self._sink = sink
        self._address_for = address_for
        self._interval = interval
        self._stop_grace = stop_grace
        self._max_failures = max_consecutive_failures
        self._throttle = throttle
        self._monitors: Dict[Ticker, Monitor] = {}
        self._locks: Dict[Ticker, asyncio.Lock] = {}
        self._lock_users: Dict[Ticker, int] = {}
        self._closed = False

    def __contains__(self, ticker: object) -> bool:
        try:
            key = normalize_ticker(ticker)
        except ValueError:
            return False
        return key in self._monitors

    def __len__(self) -> int:
        return len(self._monitors)

    @asynccontextmanager
    async def _locked(self, ticker: Ticker) -> AsyncIterator[None]:
        """Hold the ticker's lock; the entry is dropped once nobody holds or awaits it."""

        lock = self._locks.get(ticker)
        if lock is None:
            lock = self._locks[ticker] = asyncio.Lock()
        self._lock_users[ticker] = self._lock_users.get(ticker, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[ticker] - 1
            if remaining:
                self._lock_users[ticker] = remaining
            else:
                del self._lock_users[ticker]
                del self._locks[ticker]

    def _build(self, ticker: Ticker) -> Monitor:
        return Monitor(
            ticker,
            driver=self._driver,
            extractor=self._extractor,
            sink=self._sink,
            address=self._address_for(ticker),
            interval=self._interval,
            stop_grace=self._stop_grace,
            max_consecutive_failures=self._max_failures,
            throttle=self._throttle,
        )

    async def add(self, ticker: str) -> bool:
        """Start monitoring ``ticker``.

        Returns ``True`` when a new monitor was started and ``False`` when the
        ticker was already active. Acquisition failures propagate and leave
        the ticker unregistered.
        """

        key = normalize_ticker(ticker)
        if self._closed:
            raise RuntimeError("monitor registry is closed")
        async with self._locked(key):
            existing = self._monitors.get(key)
            if existing is not None and existing.active:
                logger.info("Ticker %s already being tracked", key)
                return False
            if existing is not None:
                self._monitors.pop(key, None)
                await existing.stop()

            monitor = self._build(key)
            await monitor.start()
            if self._closed:
                logger.info("Registry closed while %s was starting; stopping it", key)
                await monitor.stop()
                raise RuntimeError("monitor registry is closed")
            self._monitors[key] = monitor
            logger.info("Added ticker %s (%d active)", key, len(self._monitors))
            return True

    async def remove(self, ticker: str) -> bool:
        """Stop monitoring ``ticker``; returns ``False`` if it was absent."""

        key = normalize_ticker(ticker)
        async with self._locked(key):
            monitor = self._monitors.pop(key, None)
            if monitor is None:
                return False
            await monitor.stop()
            logger.info("Removed ticker %s (%d active)", key, len(self._monitors))
            return True

    def list(self) -> list[Ticker]:
        return sorted(self._monitors)

    def get(self, ticker: str) -> Monitor | None:
        try:
            return self._monitors.get(normalize_ticker(ticker))
        except ValueError:
            return None

    def stats(self) -> dict[Ticker, dict]:
        return {ticker: monitor.stats() for ticker, monitor in sorted(self._monitors.items())}

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        monitors = list(self._monitors.values())
        self._monitors.clear()
        if not monitors:
            return
        results = await asyncio.gather(*(m.stop() for m in monitors), return_exceptions=True)
        for monitor, result in zip(monitors, results):
            if isinstance(result, Exception):
                logger.error("Failed to stop monitor for %s: %s", monitor.ticker, result)
