"""
Money helpers.

All amounts are stored as integer cents. Decimal currency input (API
payloads, imports, manual commission values) is converted once, here,
with round-half-up.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


class MoneyError(ValueError):
    """Raised when a value cannot be read as a currency amount."""


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise MoneyError(f"invalid amount: {value!r}")
    try:
        # str() first so floats like 0.1 keep their printed value
        return Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise MoneyError(f"invalid amount: {value!r}")


def to_cents(value) -> int:
    """Convert a decimal currency amount to integer cents (half-up)."""
    amount = to_decimal(value)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_cents(value: Decimal) -> int:
    """Round a fractional cent amount to whole cents (half-up)."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_money(cents: int | None) -> str:
    """Human readable amount for audit details: 'R$ 1234.56'."""
    return f"R$ {from_cents(cents or 0)}"
