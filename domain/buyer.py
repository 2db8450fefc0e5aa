"""
Domain: buyer accounts as seen by billing.

A buyer may hold stored payment methods at the gateway. Which one is charged
off-session is decided by an explicit policy (`select_default_payment_method`)
rather than by list position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Sequence
from uuid import UUID

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class PaymentMethod:
    """A card stored at the gateway for off-session charges."""

    method_ref: str
    brand: str
    last4: str
    exp_month: int
    exp_year: int
    created_at: datetime
    is_default: bool = False

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if not 1 <= self.exp_month <= 12:
            raise ValueError("exp_month must be between 1 and 12")

    def is_expired(self, today: date) -> bool:
        """A card is valid through the last day of its expiry month."""

        return (self.exp_year, self.exp_month) < (today.year, today.month)


@dataclass(frozen=True, slots=True)
class Buyer:
    """
    Buyer account fields needed for invoicing and payment.

    `gateway_customer_ref` is cached after the first gateway customer is
    created so retries never create a second customer.
    """

    buyer_id: UUID
    email: str
    first_name: str = ""
    last_name: str = ""
    gateway_customer_ref: Optional[str] = None
    payment_methods: Sequence[PaymentMethod] = field(default_factory=tuple)
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email


def select_default_payment_method(
    methods: Sequence[PaymentMethod], today: date
) -> Optional[PaymentMethod]:
    """
    Pick the payment method used for off-session charges.

    Policy:
    1. Expired methods are never selected.
    2. A method flagged `is_default` wins.
    3. Otherwise the most recently added method wins.
    4. No usable method -> None (caller falls back to a pay link).
    """

    usable = [m for m in methods if not m.is_expired(today)]
    if not usable:
        return None
    for method in usable:
        if method.is_default:
            return method
    return max(usable, key=lambda m: m.created_at)
