"""Coalesce samples from every monitor into debounced batches."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, Optional

from .domain import Sample, Ticker

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[Sample]], Optional[Awaitable[None]]]


class Batcher:
    """Keep the latest sample per ticker and flush them together.

    The first sample submitted into an empty window arms a one-shot timer;
    when it fires the whole window is handed to ``publish`` as a list with
    one sample per ticker. Nothing is flushed while no samples arrive, so an
    empty batch is never published.
    """

    def __init__(self, publish: BatchHandler, *, delay: float = 0.05) -> None:
        self._publish = publish
        self._delay = max(float(delay), 0.0)
        self._pending: Dict[Ticker, Sample] = {}
        self._timer: asyncio.Task[None] | None = None
        self._closed = False
        self._received = 0
        self._coalesced = 0
        self._flushed_batches = 0
        self._flushed_samples = 0

    @property
    def pending_size(self) -> int:
        return len(self._pending)

    def submit(self, sample: Sample) -> None:
        if self._closed:
            logger.debug("Batcher closed; dropping sample for %s", sample.ticker)
            return
        self._received += 1
        if sample.ticker in self._pending:
            self._coalesced += 1
        self._pending[sample.ticker] = sample
        if self._timer is None:
            self._timer = asyncio.get_running_loop().create_task(self._flush_later())

    async def _flush_later(self) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            self._timer = None
            raise
        self._timer = None
        await self.flush()

    async def flush(self) -> int:
        """Publish everything pending right away; returns the batch size."""

        if not self._pending:
            return 0
        batch = list(self._pending.values())
        self._pending = {}
        self._flushed_batches += 1
        self._flushed_samples += len(batch)
        try:
            result = self._publish(batch)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Failed to publish batch of %d samples", len(batch))
        return len(batch)

    async def close(self, *, flush: bool = True) -> None:
        self._closed = True
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
        if flush:
            await self.flush()
        else:
            self._pending.clear()

    def stats(self) -> dict:
        return {
            "pending": len(self._pending),
            "received": self._received,
            "coalesced": self._coalesced,
            "batches": self._flushed_batches,
            "flushed_samples": self._flushed_samples,
        }
