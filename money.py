"""Decimal money helpers.

Amounts are quantized to cents with ROUND_HALF_UP and stored as plain
numbers; every sum converts each stored value back through ``to_money`` so
float representation error never accumulates.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest amount that survives storage as a double with cent precision.
MAX_AMOUNT = Decimal("1000000000000")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def sum_money(values: Iterable[Any]) -> Decimal:
    total = ZERO
    for v in values:
        total += to_money(v)
    return total


def to_number(amount: Decimal) -> float:
    """Storage / JSON representation of a quantized amount."""
    return float(amount)
