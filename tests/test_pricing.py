# tests/test_pricing.py
from decimal import Decimal

import pytest

from callbilling.services.pricing import calculate_call_cost, format_currency, round_currency


def test_calculate_call_cost_rounds_to_four_places():
    # 125s at $0.02/min = 0.041666...
    assert calculate_call_cost(125, Decimal("0.02")) == Decimal("0.0417")


def test_calculate_call_cost_full_minutes():
    assert calculate_call_cost(90, Decimal("0.20")) == Decimal("0.3000")
    assert calculate_call_cost(60, Decimal("0.15")) == Decimal("0.1500")


def test_zero_and_negative_durations_cost_nothing():
    assert calculate_call_cost(0, Decimal("0.20")) == Decimal("0")
    assert calculate_call_cost(-30, Decimal("0.20")) == Decimal("0")


def test_negative_rate_is_rejected():
    with pytest.raises(ValueError):
        calculate_call_cost(60, Decimal("-0.01"))


def test_round_currency_is_half_up():
    assert round_currency(Decimal("0.00005")) == Decimal("0.0001")
    assert round_currency(0.1) == Decimal("0.1000")


def test_format_currency():
    assert format_currency(Decimal("0.0417")) == "$0.04"
    assert format_currency(5) == "$5.00"
