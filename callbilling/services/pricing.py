# callbilling/services/pricing.py
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, Decimal]

CURRENCY_PRECISION = Decimal("0.0001")
DISPLAY_PRECISION = Decimal("0.01")


def _to_decimal(value: Number) -> Decimal:
    # str() keeps float inputs like 0.1 from dragging binary noise along
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_currency(value: Number) -> Decimal:
    """Round to the internal currency precision (4 dp, half-up)."""
    return _to_decimal(value).quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def format_currency(value: Number) -> str:
    """Display form, e.g. Decimal('0.0417') -> '$0.04'."""
    display = _to_decimal(value).quantize(DISPLAY_PRECISION, rounding=ROUND_HALF_UP)
    return f"${display}"


def calculate_call_cost(duration_seconds: Number, rate_per_minute: Number) -> Decimal:
    """
    cost = max(0, duration_seconds) / 60 * rate_per_minute

    Rounded to 4 decimal places. Zero or negative durations cost nothing.

    >>> calculate_call_cost(125, Decimal("0.02"))
    Decimal('0.0417')
    """
    seconds = max(Decimal(0), _to_decimal(duration_seconds))
    rate = _to_decimal(rate_per_minute)
    if rate < 0:
        raise ValueError("rate_per_minute must be >= 0")
    return round_currency(seconds / Decimal(60) * rate)
