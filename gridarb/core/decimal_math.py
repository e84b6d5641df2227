"""
Exact decimal helpers for prices, position values and PnL.

Every price/value computation in the package goes through these functions so
that repeated ticks never accumulate binary floating-point error. Floats are
converted through their shortest repr (0.1 -> Decimal("0.1")), never through
their binary expansion.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

# Private context so callers' global decimal settings are left alone.
_CTX = Context(prec=64, rounding=ROUND_HALF_UP)

ZERO = Decimal(0)
ONE_HUNDRED = Decimal(100)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a decimal amount")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def add(a: Number, b: Number) -> Decimal:
    return _CTX.add(to_decimal(a), to_decimal(b))


def subtract(a: Number, b: Number) -> Decimal:
    return _CTX.subtract(to_decimal(a), to_decimal(b))


def multiply(a: Number, b: Number) -> Decimal:
    return _CTX.multiply(to_decimal(a), to_decimal(b))


def divide(a: Number, b: Number) -> Decimal:
    divisor = to_decimal(b)
    if divisor == 0:
        raise ZeroDivisionError("decimal division by zero")
    return _CTX.divide(to_decimal(a), divisor)


def compare(a: Number, b: Number) -> int:
    """Return -1, 0 or 1."""
    return int(_CTX.compare(to_decimal(a), to_decimal(b)))


def round_to_places(value: Number, places: int) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP, context=_CTX)


def is_zero(value: Number | None) -> bool:
    return value is None or compare(value, ZERO) == 0


def percentage_of(value: Number, base: Number) -> Decimal:
    """value / base * 100."""
    return multiply(divide(value, base), ONE_HUNDRED)
