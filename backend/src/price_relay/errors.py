"""Failure taxonomy shared by the monitoring and fan-out layers."""

from __future__ import annotations

from typing import Sequence


class PriceRelayError(Exception):
    """Base class for every error raised by :mod:`price_relay`."""


class InvalidTicker(PriceRelayError, ValueError):
    def __init__(self, raw: object) -> None:
        super().__init__(f"invalid ticker: {raw!r}")
        self.raw = raw


class DriverUnavailable(PriceRelayError):
    """The shared page driver cannot serve any ticker."""


class AcquisitionFailure(PriceRelayError):
    def __init__(self, ticker: str, address: str, reason: str) -> None:
        super().__init__(f"could not open {address} for {ticker}: {reason}")
        self.ticker = ticker
        self.address = address
        self.reason = reason


class ExtractionFailure(PriceRelayError):
    def __init__(self, ticker: str, attempted: Sequence[str]) -> None:
        tried = ", ".join(attempted) or "none"
        super().__init__(f"no price resolved for {ticker} (tried: {tried})")
        self.ticker = ticker
        self.attempted = tuple(attempted)


class DeliveryFailure(PriceRelayError):
    def __init__(self, subscriber_id: str, reason: str) -> None:
        super().__init__(f"delivery to {subscriber_id} failed: {reason}")
        self.subscriber_id = subscriber_id
        self.reason = reason
