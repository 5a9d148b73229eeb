from __future__ import annotations

import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence, TypedDict

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidTicker

Ticker = str  # "BTCUSD"

_TICKER_RE = re.compile(r"^[A-Z0-9][A-Z0-9._:!\-]{0,39}$")


def normalize_ticker(raw: object) -> Ticker:
    """Return the canonical (upper-case, trimmed) form of a ticker."""

    if not isinstance(raw, str):
        raise InvalidTicker(raw)
    ticker = raw.strip().upper()
    if not _TICKER_RE.match(ticker):
        raise InvalidTicker(raw)
    return ticker


class SampleDict(TypedDict):
    ticker: Ticker
    value: float
    changePercent: float
    observedAt: int  # epoch milliseconds


class Sample(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: Ticker
    value: Decimal = Field(gt=0)
    change_percent: Decimal = Decimal("0")
    observed_at: float = Field(default_factory=lambda: time.time())
    origin: str = "unknown"

    @property
    def pair(self) -> tuple[Decimal, Decimal]:
        return self.value, self.change_percent

    def to_dict(self) -> SampleDict:
        return SampleDict(
            ticker=self.ticker,
            value=float(self.value),
            changePercent=float(self.change_percent),
            observedAt=int(self.observed_at * 1000),
        )


Batch = Sequence[Sample]


def batch_to_list(batch: Batch) -> list[SampleDict]:
    return [sample.to_dict() for sample in batch]


@dataclass
class MonitorState:
    last_value: Decimal | None = None
    last_change_percent: Decimal | None = None
    last_observed_at: float | None = None
    active: bool = False

    def differs(self, sample: Sample) -> bool:
        if self.last_value is None:
            return True
        return (self.last_value, self.last_change_percent) != sample.pair

    def record(self, sample: Sample) -> None:
        self.last_value = sample.value
        self.last_change_percent = sample.change_percent
        self.last_observed_at = sample.observed_at
