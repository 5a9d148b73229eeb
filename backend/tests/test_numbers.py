from decimal import Decimal

import pytest

from price_relay.extraction.numbers import (
    coerce_decimal,
    finite_percent,
    parse_decimal,
    parse_percent,
    positive_price,
    round_price,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("45,250.75", Decimal("45250.75")),
        ("$1,234,567.891", Decimal("1234567.891")),
        ("  0.00004512 USD", Decimal("0.00004512")),
        ("−12.5", Decimal("-12.5")),
        ("", None),
        ("N/A", None),
        ("1.2.3", None),
    ],
)
def test_parse_decimal(text, expected):
    assert parse_decimal(text) == expected


def test_coerce_decimal_rejects_bools_and_non_finite_values():
    assert coerce_decimal(True) is None
    assert coerce_decimal(float("nan")) is None
    assert coerce_decimal(float("inf")) is None
    assert coerce_decimal(42) == Decimal("42")
    assert coerce_decimal(0.1) == Decimal("0.1")
    assert coerce_decimal("2,800.10") == Decimal("2800.10")


def test_parse_percent_handles_unicode_minus_and_sign_requirement():
    assert parse_percent("−1.25%") == Decimal("-1.25")
    assert parse_percent("+0.84 %") == Decimal("0.84")
    assert parse_percent("Volume 24h 12%", signed=True) is None
    assert parse_percent("BTC 45,000.00 +2.10%", signed=True) == Decimal("2.10")
    assert parse_percent("no change") is None


def test_round_price_uses_two_decimals_above_one_and_eight_below():
    assert round_price(Decimal("45250.755")) == Decimal("45250.76")
    assert round_price(Decimal("0.123456789")) == Decimal("0.12345679")
    assert round_price(Decimal("1")) == Decimal("1.00000000")


def test_positive_price_drops_values_that_round_to_zero():
    assert positive_price(Decimal("0.000000001")) is None
    assert positive_price(Decimal("-3")) is None
    assert positive_price(None) is None
    assert positive_price(Decimal("3.141")) == Decimal("3.14")


def test_values_beyond_decimal_precision_are_not_prices():
    assert positive_price(Decimal("1" * 30)) is None
    assert positive_price(coerce_decimal(1e30)) is None
    assert positive_price(Decimal("1" * 20)) == Decimal("1" * 20)


def test_finite_percent():
    assert finite_percent(Decimal("1.275")) == Decimal("1.28")
    assert finite_percent(Decimal("1e40")) is None
    assert finite_percent(Decimal("NaN")) is None
    assert finite_percent(None) is None
