import asyncio
import inspect
import sys
import time
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from price_relay.domain import Sample  # noqa: E402
from price_relay.errors import DriverUnavailable, ExtractionFailure  # noqa: E402
from price_relay.extraction.strategies import SCRIPT_CONTEXT_PROBE, TITLE_PROBE  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:  # pragma: no cover - pytest hook
    config.addinivalue_line("markers", "asyncio: execute test as an asyncio coroutine")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:  # pragma: no cover - pytest hook
    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(test_function(**pyfuncitem.funcargs))
        finally:
            loop.close()
        return True
    return None


@dataclass
class FakePage:
    fields: dict[str, str] = field(default_factory=dict)
    context: Any = None
    nodes: Any = None
    title: Any = None
    closed: bool = False


class FakePageDriver:
    """In-memory page driver: one :class:`FakePage` per address."""

    def __init__(self, pages: dict[str, FakePage] | None = None) -> None:
        self.pages = pages or {}
        self.failing: set[str] = set()
        self.unavailable = False
        self.open_delay = 0.0
        self.opened: list[str] = []
        self.closed_pages: list[FakePage] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.started = False

    async def open(self, address: str) -> FakePage:
        if self.unavailable:
            raise DriverUnavailable("browser disconnected")
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if address in self.failing:
            raise RuntimeError("navigation timeout")
        self.opened.append(address)
        return self.pages.setdefault(address, FakePage())

    async def read_field(self, handle: FakePage, selector: str) -> str | None:
        return handle.fields.get(selector)

    async def evaluate_script(self, handle: FakePage, probe: str) -> Any:
        if probe == SCRIPT_CONTEXT_PROBE:
            return handle.context
        if probe == TITLE_PROBE:
            return handle.title
        if "querySelectorAll('body *')" in probe:
            return handle.nodes
        return None

    async def close_page(self, handle: FakePage) -> None:
        handle.closed = True
        self.closed_pages.append(handle)


class ScriptedExtractor:
    """Plays back prices (or ``None`` for a failed cycle) one per call.

    Once the script runs out the last entry repeats. ``gate`` lets a test hold
    an extraction in flight.
    """

    def __init__(self, script: list[Any], *, origin: str = "selector") -> None:
        self.script = list(script)
        self.origin = origin
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.in_flight = asyncio.Event()

    async def extract(self, handle: Any, ticker: str) -> Sample:
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        self.in_flight.set()
        if self.gate is not None:
            await self.gate.wait()
        entry = self.script[index]
        if entry is None:
            raise ExtractionFailure(ticker, ["selector"])
        value, change = entry if isinstance(entry, tuple) else (entry, "0")
        return Sample(
            ticker=ticker,
            value=Decimal(str(value)),
            change_percent=Decimal(str(change)),
            observed_at=time.time(),
            origin=self.origin,
        )


def make_sample(ticker: str, value: str, change: str = "0", observed_at: float | None = None) -> Sample:
    return Sample(
        ticker=ticker,
        value=Decimal(value),
        change_percent=Decimal(change),
        observed_at=time.time() if observed_at is None else observed_at,
        origin="selector",
    )


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step)
    return predicate()
