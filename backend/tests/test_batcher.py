import asyncio
import time

import pytest

from conftest import make_sample
from price_relay.batcher import Batcher


class Recorder:
    def __init__(self):
        self.batches = []
        self.times = []

    def __call__(self, batch):
        self.batches.append(batch)
        self.times.append(time.monotonic())


@pytest.mark.asyncio
async def test_samples_in_one_window_flush_together():
    recorder = Recorder()
    batcher = Batcher(recorder, delay=0.05)

    start = time.monotonic()
    batcher.submit(make_sample("BTCUSD", "45000"))
    await asyncio.sleep(0.01)
    batcher.submit(make_sample("ETHUSD", "2800"))
    await asyncio.sleep(0.15)

    assert len(recorder.batches) == 1
    assert {s.ticker for s in recorder.batches[0]} == {"BTCUSD", "ETHUSD"}
    elapsed = recorder.times[0] - start
    assert 0.04 <= elapsed < 0.15
    assert batcher.pending_size == 0


@pytest.mark.asyncio
async def test_latest_sample_per_ticker_wins():
    recorder = Recorder()
    batcher = Batcher(recorder, delay=0.02)

    batcher.submit(make_sample("BTCUSD", "45000"))
    batcher.submit(make_sample("BTCUSD", "45001", "0.1"))
    await asyncio.sleep(0.08)

    assert len(recorder.batches) == 1
    (only,) = recorder.batches[0]
    assert str(only.value) == "45001"
    assert batcher.stats()["coalesced"] == 1


@pytest.mark.asyncio
async def test_no_samples_no_batches():
    recorder = Recorder()
    batcher = Batcher(recorder, delay=0.01)

    await asyncio.sleep(0.05)
    assert await batcher.flush() == 0

    assert recorder.batches == []


@pytest.mark.asyncio
async def test_next_window_starts_after_flush():
    recorder = Recorder()
    batcher = Batcher(recorder, delay=0.02)

    batcher.submit(make_sample("BTCUSD", "1.5"))
    await asyncio.sleep(0.06)
    batcher.submit(make_sample("BTCUSD", "1.6"))
    await asyncio.sleep(0.06)

    assert [[str(s.value) for s in batch] for batch in recorder.batches] == [["1.5"], ["1.6"]]


@pytest.mark.asyncio
async def test_publish_errors_are_contained():
    calls = []

    def broken(batch):
        calls.append(batch)
        raise RuntimeError("boom")

    batcher = Batcher(broken, delay=0.01)
    batcher.submit(make_sample("BTCUSD", "2"))
    await asyncio.sleep(0.05)
    batcher.submit(make_sample("BTCUSD", "3"))
    await asyncio.sleep(0.05)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_async_publish_is_awaited():
    received = []

    async def publish(batch):
        await asyncio.sleep(0)
        received.extend(batch)

    batcher = Batcher(publish, delay=0.01)
    batcher.submit(make_sample("SOLUSD", "150"))
    await asyncio.sleep(0.05)

    assert [s.ticker for s in received] == ["SOLUSD"]


@pytest.mark.asyncio
async def test_close_flushes_pending_and_rejects_more():
    recorder = Recorder()
    batcher = Batcher(recorder, delay=10)

    batcher.submit(make_sample("BTCUSD", "45000"))
    await batcher.close()
    batcher.submit(make_sample("ETHUSD", "2800"))

    assert len(recorder.batches) == 1
    assert batcher.pending_size == 0
