"""Boundary operations exposed to the transport layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .batcher import Batcher
from .broadcaster import Broadcaster, SubscriberSink
from .domain import Ticker, normalize_ticker
from .drivers.base import PageDriver
from .drivers.browser import PlaywrightPageDriver
from .errors import AcquisitionFailure, InvalidTicker
from .extraction import Extractor, default_strategies
from .monitor import SampleSource, Throttle
from .registry import MonitorRegistry
from .settings import Settings, settings as default_settings
from .simulation import SimulatedExtractor, SimulatedPageDriver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddTickerResult:
    accepted: bool
    reason: str | None = None


@dataclass(frozen=True)
class RemoveTickerResult:
    accepted: bool


@dataclass(frozen=True)
class ServiceMetrics:
    active_ticker_count: int
    subscriber_count: int
    pending_batch_size: int

    def to_dict(self) -> dict:
        return {
            "activeTickerCount": self.active_ticker_count,
            "subscriberCount": self.subscriber_count,
            "pendingBatchSize": self.pending_batch_size,
        }


def build_source(config: Settings) -> tuple[PageDriver, SampleSource]:
    if config.simulation_mode:
        return SimulatedPageDriver(), SimulatedExtractor()
    driver = PlaywrightPageDriver(
        headless=config.browser_headless,
        user_agent=config.browser_user_agent,
        load_timeout=config.page_load_timeout,
        settle_delay=config.page_settle_delay,
    )
    strategies = default_strategies(min_value=config.min_price, max_value=config.max_price)
    return driver, Extractor(driver, strategies)


class PriceService:
    """Wire driver, registry, batcher and broadcaster into one pipeline."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        driver: PageDriver | None = None,
        extractor: SampleSource | None = None,
        broadcaster: Broadcaster | None = None,
        throttle: Throttle | None = None,
    ) -> None:
        self.config = config or default_settings
        if driver is None and extractor is None:
            driver, extractor = build_source(self.config)
        elif extractor is None:
            extractor = Extractor(
                driver,
                default_strategies(min_value=self.config.min_price, max_value=self.config.max_price),
            )
        elif driver is None:
            raise ValueError("a custom extractor requires the driver it reads from")
        self.driver = driver
        self.simulated = isinstance(extractor, SimulatedExtractor)
        self.broadcaster = broadcaster or Broadcaster(
            timeout=self.config.subscriber_timeout,
            sweep_interval=self.config.sweep_interval,
            queue_size=self.config.subscriber_queue_size,
            delivery_timeout=self.config.delivery_timeout,
        )
        self.batcher = Batcher(self.broadcaster.publish, delay=self.config.batch_delay)
        self.registry = MonitorRegistry(
            driver=driver,
            extractor=extractor,
            sink=self.batcher.submit,
            address_for=self.config.source_url,
            interval=self.config.sample_interval,
            stop_grace=self.config.stop_grace,
            max_consecutive_failures=self.config.max_consecutive_failures,
            throttle=throttle,
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.driver.start()
        await self.broadcaster.start()
        self._started = True
        mode = "simulation" if self.simulated else "page extraction"
        logger.info("Price service started in %s mode", mode)
        for ticker in self.config.initial_tickers:
            result = await self.add_ticker(ticker)
            if not result.accepted:
                logger.warning("Initial ticker %s rejected: %s", ticker, result.reason)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.registry.close()
        await self.batcher.close()
        await self.broadcaster.stop()
        await self.driver.close()
        logger.info("Price service stopped")

    async def add_ticker(self, ticker: str) -> AddTickerResult:
        """Start monitoring a ticker.

        Invalid identifiers and pages that cannot be opened are reported as a
        rejected result. ``DriverUnavailable`` propagates as a system error.
        """

        try:
            key = normalize_ticker(ticker)
        except InvalidTicker as exc:
            return AddTickerResult(accepted=False, reason=str(exc))
        try:
            created = await self.registry.add(key)
        except AcquisitionFailure as exc:
            return AddTickerResult(accepted=False, reason=str(exc))
        if not created:
            return AddTickerResult(accepted=True, reason=f"{key} already tracked")
        return AddTickerResult(accepted=True)

    async def remove_ticker(self, ticker: str) -> RemoveTickerResult:
        try:
            await self.registry.remove(ticker)
        except InvalidTicker:
            return RemoveTickerResult(accepted=False)
        return RemoveTickerResult(accepted=True)

    def list_tickers(self) -> list[Ticker]:
        return self.registry.list()

    def subscribe(self, sink: SubscriberSink) -> str:
        return self.broadcaster.subscribe(sink)

    def unsubscribe(self, subscriber_id: str) -> bool:
        return self.broadcaster.unsubscribe(subscriber_id)

    def keep_alive(self, subscriber_id: str) -> bool:
        return self.broadcaster.keep_alive(subscriber_id)

    def metrics(self) -> ServiceMetrics:
        return ServiceMetrics(
            active_ticker_count=len(self.registry),
            subscriber_count=len(self.broadcaster),
            pending_batch_size=self.batcher.pending_size,
        )

    def performance(self) -> dict:
        return {
            "mode": "simulation" if self.simulated else "extraction",
            "metrics": self.metrics().to_dict(),
            "monitors": self.registry.stats(),
            "batcher": self.batcher.stats(),
            "broadcaster": self.broadcaster.stats(),
        }
