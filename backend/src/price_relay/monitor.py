"""Per-ticker monitoring lifecycle: Starting -> Sampling -> Stopped."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol

from .domain import MonitorState, Sample, Ticker
from .drivers.base import PageDriver, PageHandle
from .errors import AcquisitionFailure, DriverUnavailable, ExtractionFailure

logger = logging.getLogger(__name__)

SampleSink = Callable[[Sample], None]
Throttle = Callable[[Ticker], Awaitable[None]]


class SampleSource(Protocol):
    async def extract(self, handle: PageHandle, ticker: Ticker) -> Sample:
        ...


class MonitorStatus(str, Enum):
    STARTING = "starting"
    SAMPLING = "sampling"
    STOPPED = "stopped"


@dataclass
class MonitorStats:
    cycles: int = 0
    samples: int = 0
    forwarded: int = 0
    unchanged: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_origin: str | None = None
    last_error: str | None = None


class Monitor:
    """Own one ticker's page handle and sampling task.

    The sampling loop forwards a sample to ``sink`` only when the
    ``(value, change_percent)`` pair differs from the last forwarded one.
    Extraction failures are counted and logged; they never stop the loop.
    """

    def __init__(
        self,
        ticker: Ticker,
        *,
        driver: PageDriver,
        extractor: SampleSource,
        sink: SampleSink,
        address: str,
        interval: float = 1.0,
        stop_grace: float = 2.0,
        max_consecutive_failures: int | None = None,
        throttle: Throttle | None = None,
    ) -> None:
        self._ticker = ticker
        self._driver = driver
        self._extractor = extractor
        self._sink = sink
        self._address = address
        self._interval = max(float(interval), 0.0)
        self._stop_grace = max(float(stop_grace), 0.0)
        self._max_failures = max_consecutive_failures
        self._throttle = throttle

        self._status = MonitorStatus.STARTING
        self._state = MonitorState()
        self._stats = MonitorStats()
        self._handle: PageHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    @property
    def ticker(self) -> Ticker:
        return self._ticker

    @property
    def address(self) -> str:
        return self._address

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def active(self) -> bool:
        return self._state.active

    @property
    def state(self) -> MonitorState:
        return MonitorState(**asdict(self._state))

    def stats(self) -> dict:
        return {"status": self._status.value, "address": self._address, **asdict(self._stats)}

    async def start(self) -> None:
        if self._status is not MonitorStatus.STARTING:
            raise RuntimeError(f"monitor for {self._ticker} is already {self._status.value}")
        try:
            handle = await self._driver.open(self._address)
        except (asyncio.CancelledError, DriverUnavailable):
            self._status = MonitorStatus.STOPPED
            raise
        except Exception as exc:
            self._status = MonitorStatus.STOPPED
            reason = str(exc) or type(exc).__name__
            logger.warning("Failed to open page for %s: %s", self._ticker, reason)
            raise AcquisitionFailure(self._ticker, self._address, reason) from exc

        self._handle = handle
        self._state.active = True
        self._status = MonitorStatus.SAMPLING
        self._task = asyncio.create_task(self._run(), name=f"monitor:{self._ticker}")
        logger.info("Monitoring %s at %s", self._ticker, self._address)

    async def stop(self) -> None:
        if self._status is MonitorStatus.STOPPED:
            return
        self._status = MonitorStatus.STOPPED
        self._state.active = False
        self._stop.set()

        task, self._task = self._task, None
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self._stop_grace)
            if not done:
                logger.info("Cancelling in-flight sampling for %s", self._ticker)
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                await self._driver.close_page(handle)
            except Exception:
                logger.exception("Failed to release page for %s", self._ticker)
        logger.info("Stopped monitoring %s", self._ticker)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stop.is_set():
            started = loop.time()
            try:
                await self._sample_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Unexpected error while sampling %s", self._ticker)
                self._record_failure(str(exc) or type(exc).__name__)
            if self._stop.is_set():
                break
            delay = max(0.0, self._interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue

    async def _sample_once(self) -> None:
        self._stats.cycles += 1
        if self._throttle is not None:
            await self._throttle(self._ticker)
            if self._stop.is_set():
                return
        try:
            sample = await self._extractor.extract(self._handle, self._ticker)
        except ExtractionFailure as exc:
            self._record_failure(str(exc))
            return
        except DriverUnavailable as exc:
            logger.error("Page driver unavailable while sampling %s: %s", self._ticker, exc)
            self._record_failure(str(exc))
            return

        # The ticker may have been removed while the extraction was in flight.
        if self._stop.is_set():
            return

        self._stats.samples += 1
        self._stats.consecutive_failures = 0
        self._stats.last_origin = sample.origin
        if not self._state.differs(sample):
            self._stats.unchanged += 1
            return

        self._state.record(sample)
        self._stats.forwarded += 1
        logger.debug(
            "Price update for %s: %s (%s%%) via %s",
            self._ticker,
            sample.value,
            sample.change_percent,
            sample.origin,
        )
        try:
            self._sink(sample)
        except Exception:
            logger.exception("Failed to forward sample for %s", self._ticker)

    def _record_failure(self, reason: str) -> None:
        self._stats.failures += 1
        self._stats.consecutive_failures += 1
        self._stats.last_error = reason
        streak = self._stats.consecutive_failures
        if self._max_failures is not None and streak == self._max_failures:
            logger.warning(
                "%s has failed %d consecutive extractions; still sampling", self._ticker, streak
            )
        elif streak == 1:
            logger.info("Extraction failed for %s: %s", self._ticker, reason)
        else:
            logger.debug("Extraction failed for %s (%d in a row): %s", self._ticker, streak, reason)
