from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, Decimal]


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        return Decimal(int(bool(value)))
    try:
        d = Decimal(str(value))
    except ArithmeticError:
        return Decimal(0)
    return d if d.is_finite() else Decimal(0)


def round_half_up(value: Number, digits: int = 0) -> Decimal:
    """Half-away-from-zero rounding; Python's round() would round halves to even."""
    exp = Decimal(1).scaleb(-digits)
    return to_decimal(value).quantize(exp, rounding=ROUND_HALF_UP)


def clamp(value: Number, low: Number = 0, high: Number = 100) -> Decimal:
    v = to_decimal(value)
    return max(to_decimal(low), min(to_decimal(high), v))


def score_int(value: Number) -> int:
    """Round half-up and clamp into the 0..100 score range."""
    return int(clamp(round_half_up(value)))
