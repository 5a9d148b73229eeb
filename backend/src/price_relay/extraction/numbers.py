"""Numeric normalisation helpers for scraped price text."""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_UNICODE_MINUS = "−"
_NON_NUMERIC = re.compile(r"[^\d.,\-]")
_PERCENT = re.compile(r"([+\-]?\d+(?:\.\d+)?)\s*%")
_SIGNED_PERCENT = re.compile(r"([+\-]\d+(?:\.\d+)?)\s*%")

PRICE_PATTERN = re.compile(r"\$?((?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2,8})")

_CENT = Decimal("0.01")
_SATOSHI = Decimal("0.00000001")


def parse_decimal(text: str | None) -> Decimal | None:
    """Parse a human formatted number such as ``"$45,250.75"``."""

    if not text:
        return None
    cleaned = _NON_NUMERIC.sub("", text.strip().replace(_UNICODE_MINUS, "-"))
    cleaned = cleaned.replace(",", "")
    if not cleaned or cleaned in {"-", "."}:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def coerce_decimal(raw: Any) -> Decimal | None:
    """Convert a value read from a page script context to :class:`Decimal`."""

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return Decimal(str(raw))
    if isinstance(raw, str):
        return parse_decimal(raw)
    return None


def parse_percent(text: str | None, *, signed: bool = False) -> Decimal | None:
    """Find the first percent token in ``text``.

    With ``signed=True`` only explicitly signed tokens (``+1.2%``) match, which
    is what the free-text scan uses to avoid picking up unrelated figures.
    """

    if not text:
        return None
    normalized = text.replace(_UNICODE_MINUS, "-")
    match = (_SIGNED_PERCENT if signed else _PERCENT).search(normalized)
    if match is None:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def round_price(value: Decimal) -> Decimal:
    """Two decimals above one unit, eight below it."""

    quantum = _CENT if value > 1 else _SATOSHI
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def positive_price(value: Decimal | None) -> Decimal | None:
    """Round ``value`` and return it only if it is still strictly positive."""

    if value is None or value <= 0:
        return None
    try:
        rounded = round_price(value)
    except InvalidOperation:
        # more digits than the decimal context can hold
        return None
    return rounded if rounded > 0 else None


def finite_percent(value: Decimal | None) -> Decimal | None:
    """Round a change percentage; ``None`` if it is missing or unrepresentable."""

    if value is None or not value.is_finite():
        return None
    try:
        return round_percent(value)
    except InvalidOperation:
        return None
