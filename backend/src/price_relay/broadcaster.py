"""Fan batches out to every subscriber and evict the ones that stop listening."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .domain import Sample
from .errors import DeliveryFailure

logger = logging.getLogger(__name__)

Delivery = Sequence[Sample]
SubscriberSink = Callable[[Delivery], Optional[Awaitable[None]]]


@dataclass(eq=False)
class Subscriber:
    id: str
    sink: SubscriberSink
    queue: "asyncio.Queue[Delivery]"
    last_activity: float
    created_at: float
    alive: bool = True
    delivered: int = 0
    task: asyncio.Task[None] | None = None
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    close_reason: str | None = None


class Broadcaster:
    """Own the subscriber set and deliver published batches.

    ``publish`` only enqueues the batch for each subscriber and returns; a
    dedicated task per subscriber awaits its sink, so a slow or failing
    subscriber never holds up the caller or the other subscribers. A failed
    or overflowing delivery evicts that subscriber. A background sweep evicts
    subscribers without a successful delivery or keep-alive for ``timeout``
    seconds.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        sweep_interval: float = 30.0,
        queue_size: int = 100,
        delivery_timeout: float | None = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._sweep_interval = sweep_interval
        self._queue_size = queue_size
        self._delivery_timeout = delivery_timeout
        self._clock = clock
        self._subscribers: Dict[str, Subscriber] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self._published = 0
        self._failures = 0
        self._evictions = 0

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscribers

    def __len__(self) -> int:
        return len(self._subscribers)

    @property
    def subscriber_ids(self) -> list[str]:
        return list(self._subscribers)

    async def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="broadcaster-sweep")

    async def stop(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
        tasks = [sub.task for sub in self._subscribers.values() if sub.task is not None]
        for subscriber_id in list(self._subscribers):
            self._remove(subscriber_id, "shutdown")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def subscribe(self, sink: SubscriberSink) -> str:
        subscriber_id = uuid.uuid4().hex[:12]
        now = self._clock()
        subscriber = Subscriber(
            id=subscriber_id,
            sink=sink,
            queue=asyncio.Queue(self._queue_size),
            last_activity=now,
            created_at=now,
        )
        self._subscribers[subscriber_id] = subscriber
        subscriber.task = asyncio.get_running_loop().create_task(
            self._deliver(subscriber), name=f"subscriber:{subscriber_id}"
        )
        logger.info("Subscriber %s connected (%d total)", subscriber_id, len(self._subscribers))
        return subscriber_id

    def unsubscribe(self, subscriber_id: str) -> bool:
        removed = self._remove(subscriber_id, "unsubscribed")
        if removed:
            logger.info(
                "Subscriber %s disconnected (%d total)", subscriber_id, len(self._subscribers)
            )
        return removed

    def keep_alive(self, subscriber_id: str) -> bool:
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return False
        subscriber.last_activity = self._clock()
        return True

    async def wait_closed(self, subscriber_id: str) -> str | None:
        """Wait until the subscriber is removed and return the reason."""

        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return None
        await subscriber.closed.wait()
        return subscriber.close_reason

    def publish(self, batch: Sequence[Sample]) -> int:
        """Queue ``batch`` for every live subscriber; returns how many took it."""

        if not batch:
            return 0
        frozen = tuple(batch)
        queued = 0
        overflowed: list[str] = []
        for subscriber in list(self._subscribers.values()):
            if not subscriber.alive:
                continue
            try:
                subscriber.queue.put_nowait(frozen)
            except asyncio.QueueFull:
                overflowed.append(subscriber.id)
                continue
            queued += 1
        for subscriber_id in overflowed:
            self._fail(DeliveryFailure(subscriber_id, "delivery queue full"))
        self._published += 1
        logger.debug("Batched %d price updates to %d subscribers", len(frozen), queued)
        return queued

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict subscribers idle for longer than the liveness timeout."""

        current = self._clock() if now is None else now
        stale = [
            sub.id
            for sub in self._subscribers.values()
            if current - sub.last_activity > self._timeout
        ]
        for subscriber_id in stale:
            logger.info("Removing stale subscriber %s", subscriber_id)
            self._evictions += 1
            self._remove(subscriber_id, "liveness timeout")
        return stale

    def stats(self) -> dict:
        now = self._clock()
        return {
            "subscribers": len(self._subscribers),
            "clients": {
                sub.id: {
                    "delivered": sub.delivered,
                    "connected_for": now - sub.created_at,
                    "idle_for": now - sub.last_activity,
                    "queued": sub.queue.qsize(),
                }
                for sub in self._subscribers.values()
            },
            "published": self._published,
            "delivery_failures": self._failures,
            "evictions": self._evictions,
            "queued": sum(sub.queue.qsize() for sub in self._subscribers.values()),
        }

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Subscriber sweep failed")

    async def _deliver(self, subscriber: Subscriber) -> None:
        while subscriber.alive:
            batch = await subscriber.queue.get()
            if not subscriber.alive:
                return
            try:
                result = subscriber.sink(batch)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self._delivery_timeout)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                self._fail(DeliveryFailure(subscriber.id, "delivery timed out"))
                return
            except Exception as exc:
                self._fail(DeliveryFailure(subscriber.id, str(exc) or type(exc).__name__))
                return
            subscriber.last_activity = self._clock()
            subscriber.delivered += 1

    def _fail(self, failure: DeliveryFailure) -> None:
        logger.warning("Failed to send to subscriber %s: %s", failure.subscriber_id, failure.reason)
        self._failures += 1
        self._evictions += 1
        self._remove(failure.subscriber_id, failure.reason)

    def _remove(self, subscriber_id: str, reason: str) -> bool:
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return False
        subscriber.alive = False
        subscriber.close_reason = reason
        subscriber.closed.set()
        task = subscriber.task
        if task is not None and task is not _current_task() and not task.done():
            task.cancel()
        return True


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
