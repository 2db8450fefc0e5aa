"""
Domain: Invoice and LineItem.

Contract implemented here:
- One invoice covers one buyer in one auction, with one LineItem per won lot.
- total_amount == subtotal + buyers_premium + tax_amount, exactly (minor units).
- Sum of line totals == total_amount.
- paid_at is set iff status == Paid.
- Status machine: Unpaid -> Paid, Unpaid -> Cancelled. Paid and Cancelled are
  terminal.

Pure domain: no I/O. Persistence enforces the same transitions with guarded
updates (see repositories/invoice_repository.py).
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence
from uuid import UUID

from . import money
from .bidding import AuctionItem, WinningBid, meets_reserve
from .errors import ConflictError, ValidationError
from .time import require_utc_timestamp


class InvoiceStatus(str, Enum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    CANCELLED = "Cancelled"


_ALLOWED_TRANSITIONS: frozenset[tuple[InvoiceStatus, InvoiceStatus]] = frozenset(
    {
        (InvoiceStatus.UNPAID, InvoiceStatus.PAID),
        (InvoiceStatus.UNPAID, InvoiceStatus.CANCELLED),
    }
)


def ensure_transition(current: InvoiceStatus, target: InvoiceStatus) -> None:
    """Raise ConflictError unless current -> target is a legal transition."""

    if (current, target) not in _ALLOWED_TRANSITIONS:
        raise ConflictError(
            f"Invoice cannot move from {current.value} to {target.value}",
            current_status=current.value,
        )


_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_number(now: datetime, suffix_length: int = 6) -> str:
    """
    Time-ordered, human-displayable invoice number, e.g. INV-20260119143005-7QK2ZD.

    Collisions are unlikely, not impossible: the store enforces uniqueness.
    """

    require_utc_timestamp("now", now)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(suffix_length))
    return f"INV-{now:%Y%m%d%H%M%S}-{suffix}"


@dataclass(frozen=True, slots=True)
class SellerTerms:
    """Fee percentages applied to a lot's hammer price."""

    buyers_premium_percent: Decimal = Decimal("0")
    tax_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.buyers_premium_percent < 0 or self.tax_percent < 0:
            raise ValidationError("Fee percentages must not be negative")

    @staticmethod
    def for_item(item: AuctionItem) -> "SellerTerms":
        return SellerTerms(
            buyers_premium_percent=item.buyers_premium_percent,
            tax_percent=item.tax_percent,
        )


@dataclass(frozen=True, slots=True)
class LineItem:
    invoice_id: UUID
    auction_item_id: UUID
    hammer_price: int
    buyers_premium_share: int
    tax_share: int
    line_total: int
    winning_bid_id: Optional[UUID] = None

    def __post_init__(self) -> None:
        expected = money.add(self.hammer_price, self.buyers_premium_share, self.tax_share)
        if self.line_total != expected:
            raise ValueError(
                f"line_total {self.line_total} != hammer + premium + tax ({expected})"
            )


@dataclass(frozen=True, slots=True)
class Invoice:
    invoice_id: UUID
    invoice_number: str
    buyer_id: UUID
    auction_id: UUID
    status: InvoiceStatus
    subtotal: int
    buyers_premium: int
    tax_amount: int
    total_amount: int
    created_at: datetime
    line_items: Sequence[LineItem] = field(default_factory=tuple)
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_link_ref: Optional[str] = None
    payment_link_url: Optional[str] = None
    automatic_charge_ref: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        for name in ("sent_at", "paid_at", "cancelled_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

        expected_total = money.add(self.subtotal, self.buyers_premium, self.tax_amount)
        if self.total_amount != expected_total:
            raise ValueError(
                f"total_amount {self.total_amount} != subtotal + premium + tax ({expected_total})"
            )
        if self.line_items:
            line_sum = money.add(*(li.line_total for li in self.line_items))
            if line_sum != self.total_amount:
                raise ValueError(f"line totals {line_sum} != total_amount {self.total_amount}")
        if (self.paid_at is not None) != (self.status is InvoiceStatus.PAID):
            raise ValueError("paid_at must be set iff status is Paid")

    @property
    def is_open(self) -> bool:
        return self.status is InvoiceStatus.UNPAID

    @property
    def is_sent(self) -> bool:
        return self.sent_at is not None


def build_invoice(
    *,
    invoice_id: UUID,
    invoice_number: str,
    buyer_id: UUID,
    auction_id: UUID,
    lots: Sequence[tuple[WinningBid, AuctionItem, SellerTerms]],
    created_at: datetime,
    notes: Optional[str] = None,
) -> Invoice:
    """
    Price a set of won lots into a new Unpaid invoice.

    Each lot is priced independently and rounded per line, so the line totals
    always sum to the invoice total.

    Raises:
        ValidationError: no lots, a bid that does not belong to this
            (item, buyer) pair, a non-positive amount, a bid below reserve,
            or the same item twice.
    """

    if not lots:
        raise ValidationError("An invoice needs at least one winning bid")

    seen: set[UUID] = set()
    lines: list[LineItem] = []
    for bid, item, terms in lots:
        if bid.auction_item_id != item.item_id or bid.buyer_id != buyer_id:
            raise ValidationError(
                f"No qualifying bid for item {item.item_id} and buyer {buyer_id}"
            )
        if item.auction_id != auction_id:
            raise ValidationError(f"Item {item.item_id} is not part of auction {auction_id}")
        if bid.amount <= 0:
            raise ValidationError(f"Winning bid on item {item.item_id} must be positive")
        if not meets_reserve(item, bid.amount):
            raise ValidationError(f"Winning bid on item {item.item_id} is below reserve")
        if item.item_id in seen:
            raise ValidationError(f"Item {item.item_id} appears twice on one invoice")
        seen.add(item.item_id)

        cost = money.compute_buyer_cost(bid.amount, terms.buyers_premium_percent, terms.tax_percent)
        lines.append(
            LineItem(
                invoice_id=invoice_id,
                auction_item_id=item.item_id,
                winning_bid_id=bid.bid_id,
                hammer_price=cost.hammer,
                buyers_premium_share=cost.buyers_premium,
                tax_share=cost.tax,
                line_total=cost.total,
            )
        )

    subtotal = money.add(*(li.hammer_price for li in lines))
    premium = money.add(*(li.buyers_premium_share for li in lines))
    tax = money.add(*(li.tax_share for li in lines))

    return Invoice(
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        buyer_id=buyer_id,
        auction_id=auction_id,
        status=InvoiceStatus.UNPAID,
        subtotal=subtotal,
        buyers_premium=premium,
        tax_amount=tax,
        total_amount=money.add(subtotal, premium, tax),
        created_at=created_at,
        line_items=tuple(lines),
        notes=notes,
    )
