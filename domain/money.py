"""
Domain: fixed-point money arithmetic.

All amounts inside the billing core are integers in minor units (pence).
Conversion to and from major units (pounds) happens only at the boundary:
API models, gateway payloads for display, notification text.

Buyer cost rule (fixed business rule):
- premium = round_half_up(hammer * premium_percent / 100)
- tax     = round_half_up((hammer + premium) * tax_percent / 100)
- total   = hammer + premium + tax

Tax is charged on hammer PLUS premium, never on hammer alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Rate = Union[Decimal, int, str]

_HUNDRED = Decimal(100)


def _as_decimal(value: Rate) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Use Decimal or str for rates, not float")
    return value if isinstance(value, Decimal) else Decimal(value)


def round_half_up(value: Decimal) -> int:
    """Round a fractional minor-unit amount to a whole minor unit, halves away from zero."""

    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def add(*amounts: int) -> int:
    """Sum minor-unit amounts."""

    total = 0
    for amount in amounts:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError(f"Money amounts must be int minor units, got {type(amount)!r}")
        total += amount
    return total


def multiply_by_rate(amount: int, percent: Rate) -> int:
    """Return `amount * percent / 100`, rounded half-up to a whole minor unit."""

    return round_half_up(Decimal(amount) * _as_decimal(percent) / _HUNDRED)


def to_minor_units(major: Union[Decimal, str, int]) -> int:
    """Convert a major-unit amount (e.g. Decimal('12.34')) to minor units (1234)."""

    if isinstance(major, float):
        raise TypeError("Use Decimal or str for money, not float")
    return round_half_up(Decimal(str(major)) * _HUNDRED)


def to_major_units(minor: int) -> Decimal:
    """Convert minor units to a 2dp Decimal in major units."""

    return (Decimal(minor) / _HUNDRED).quantize(Decimal("0.01"))


def format_money(minor: int, currency: str = "gbp") -> str:
    """Human display, e.g. 13200 -> '£132.00'."""

    symbols = {"gbp": "£", "usd": "$", "eur": "€"}
    symbol = symbols.get(currency.lower())
    amount = to_major_units(minor)
    if symbol is None:
        return f"{amount:,.2f} {currency.upper()}"
    if amount < 0:
        return f"-{symbol}{-amount:,.2f}"
    return f"{symbol}{amount:,.2f}"


@dataclass(frozen=True, slots=True)
class BuyerCost:
    """Fee breakdown for a single won lot, in minor units."""

    hammer: int
    buyers_premium: int
    tax: int

    @property
    def total(self) -> int:
        return add(self.hammer, self.buyers_premium, self.tax)


def compute_buyer_cost(hammer: int, premium_percent: Rate, tax_percent: Rate) -> BuyerCost:
    """Apply the buyer cost rule to one hammer price."""

    if hammer < 0:
        raise ValueError("hammer must not be negative")
    premium = multiply_by_rate(hammer, premium_percent)
    tax = multiply_by_rate(add(hammer, premium), tax_percent)
    return BuyerCost(hammer=hammer, buyers_premium=premium, tax=tax)


__all__ = [
    "BuyerCost",
    "add",
    "compute_buyer_cost",
    "format_money",
    "multiply_by_rate",
    "round_half_up",
    "to_major_units",
    "to_minor_units",
]
