"""
Domain: seller settlement statements.

Contract implemented here:
- Every item lands in exactly one of Sold, Unsold (no bids), Unsold (below reserve).
- total_sales == sum of sold hammer prices. Below-reserve bids contribute 0.
- net_payout == total_sales - commission - sum(adjustments).
- A negative net payout is rejected for manual review, never settled.
- Adjustments are itemised and named, never a single opaque number.
- Status machine: Draft -> Sent -> Paid.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol, Sequence
from uuid import UUID

from . import money
from .bidding import AuctionItem, Bid, ItemDisposition, classify_item
from .errors import ConflictError, ValidationError
from .time import require_utc_timestamp


class SettlementStatus(str, Enum):
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"


_ALLOWED_TRANSITIONS = frozenset(
    {
        (SettlementStatus.DRAFT, SettlementStatus.SENT),
        (SettlementStatus.SENT, SettlementStatus.PAID),
    }
)


def ensure_settlement_transition(current: SettlementStatus, target: SettlementStatus) -> None:
    if (current, target) not in _ALLOWED_TRANSITIONS:
        raise ConflictError(
            f"Settlement cannot move from {current.value} to {target.value}",
            current_status=current.value,
        )


_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_settlement_reference(now: datetime, suffix_length: int = 6) -> str:
    """Human reference such as SET-2026-4KD9QX; uniqueness is enforced by the store."""

    require_utc_timestamp("now", now)
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(suffix_length))
    return f"SET-{now:%Y}-{suffix}"


VAT_ON_COMMISSION = "VAT on commission"


class AdjustmentKind(str, Enum):
    EXPENSE = "expense"
    DEDUCTION = "deduction"
    FEE = "fee"


@dataclass(frozen=True, slots=True)
class Adjustment:
    """A named deduction from the seller's payout, in minor units."""

    name: str
    amount: int
    kind: AdjustmentKind = AdjustmentKind.EXPENSE

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValidationError("Adjustment name is required")
        if self.amount < 0:
            raise ValidationError(f"Adjustment '{self.name}' must not be negative")


@dataclass(frozen=True, slots=True)
class SettlementLine:
    item_id: UUID
    name: str
    disposition: ItemDisposition
    hammer_price: int = 0
    high_bid: Optional[int] = None
    reserve_price: Optional[int] = None
    lot_number: Optional[str] = None


class CommissionPolicy(Protocol):
    def commission_for(self, total_sales: int) -> int: ...

    def describe(self) -> str: ...


@dataclass(frozen=True, slots=True)
class FlatCommission:
    percent: Decimal

    def __post_init__(self) -> None:
        if not Decimal(0) <= self.percent <= Decimal(100):
            raise ValidationError("Commission percent must be between 0 and 100")

    def commission_for(self, total_sales: int) -> int:
        return money.multiply_by_rate(total_sales, self.percent)

    def describe(self) -> str:
        return f"{self.percent}%"


@dataclass(frozen=True, slots=True)
class CommissionTier:
    """Applies `percent` to the slice of sales above `from_amount` (minor units)."""

    from_amount: int
    percent: Decimal


@dataclass(frozen=True, slots=True)
class TieredCommission:
    """
    Marginal commission bands.

    Example: [(0, 15%), (100000, 10%)] charges 15% on the first £1,000 and
    10% on everything above. Each band is rounded once, after summing.
    """

    tiers: Sequence[CommissionTier]

    def __post_init__(self) -> None:
        if not self.tiers or self.tiers[0].from_amount != 0:
            raise ValidationError("Commission tiers must start at 0")
        bounds = [t.from_amount for t in self.tiers]
        if bounds != sorted(set(bounds)):
            raise ValidationError("Commission tier bounds must be strictly increasing")

    def commission_for(self, total_sales: int) -> int:
        exact = Decimal(0)
        for index, tier in enumerate(self.tiers):
            upper = self.tiers[index + 1].from_amount if index + 1 < len(self.tiers) else None
            if total_sales <= tier.from_amount:
                break
            top = total_sales if upper is None else min(total_sales, upper)
            exact += Decimal(top - tier.from_amount) * tier.percent / Decimal(100)
        return money.round_half_up(exact)

    def describe(self) -> str:
        return ", ".join(f"{t.percent}% from {money.format_money(t.from_amount)}" for t in self.tiers)


@dataclass(frozen=True, slots=True)
class SettlementStatement:
    settlement_id: UUID
    reference: str
    seller_id: UUID
    auction_id: UUID
    sold_items: Sequence[SettlementLine]
    unsold_items: Sequence[SettlementLine]
    total_sales: int
    commission: int
    adjustments: Sequence[Adjustment]
    net_payout: int
    status: SettlementStatus
    generated_at: datetime
    commission_description: str = ""
    commission_vat_percent: Optional[Decimal] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("generated_at", self.generated_at)
        expected_sales = money.add(*(line.hammer_price for line in self.sold_items))
        if self.total_sales != expected_sales:
            raise ValueError(f"total_sales {self.total_sales} != sum of sold hammer ({expected_sales})")
        expected_net = self.total_sales - self.commission - self.adjustments_total
        if self.net_payout != expected_net:
            raise ValueError(f"net_payout {self.net_payout} != {expected_net}")
        if self.net_payout < 0:
            raise ValueError("net_payout must not be negative")

    @property
    def adjustments_total(self) -> int:
        return money.add(*(adj.amount for adj in self.adjustments))

    @property
    def manual_adjustments(self) -> list[Adjustment]:
        """Adjustments entered by staff, without the computed VAT line."""

        return [
            adj
            for adj in self.adjustments
            if not (adj.kind is AdjustmentKind.FEE and adj.name == VAT_ON_COMMISSION)
        ]

    @property
    def below_reserve_items(self) -> list[SettlementLine]:
        return [line for line in self.unsold_items if line.disposition is ItemDisposition.UNSOLD_BELOW_RESERVE]


def partition_items(
    items: Sequence[AuctionItem], bids: Sequence[Bid]
) -> tuple[list[SettlementLine], list[SettlementLine]]:
    """Split a seller's items into (sold, unsold) settlement lines."""

    sold: list[SettlementLine] = []
    unsold: list[SettlementLine] = []
    for item in items:
        disposition, top = classify_item(item, bids)
        line = SettlementLine(
            item_id=item.item_id,
            name=item.name,
            disposition=disposition,
            hammer_price=top.amount if disposition is ItemDisposition.SOLD and top else 0,
            high_bid=top.amount if top else None,
            reserve_price=item.reserve_price,
            lot_number=item.lot_number,
        )
        (sold if disposition is ItemDisposition.SOLD else unsold).append(line)
    return sold, unsold


def compute_statement(
    *,
    settlement_id: UUID,
    reference: str,
    seller_id: UUID,
    auction_id: UUID,
    items: Sequence[AuctionItem],
    bids: Sequence[Bid],
    commission_policy: CommissionPolicy,
    adjustments: Sequence[Adjustment] = (),
    commission_vat_percent: Optional[Decimal] = None,
    generated_at: datetime,
) -> SettlementStatement:
    """
    Build a Draft statement for one seller in one auction.

    VAT on commission, when configured, is added as a named adjustment so the
    statement stays auditable line by line.

    Raises:
        ValidationError: no items, an item belonging to someone else, or a
            would-be negative payout.
    """

    if not items:
        raise ValidationError(f"No items found for seller {seller_id} in auction {auction_id}")
    for item in items:
        if item.seller_id != seller_id or item.auction_id != auction_id:
            raise ValidationError(f"Item {item.item_id} does not belong to this seller and auction")

    sold, unsold = partition_items(items, bids)
    total_sales = money.add(*(line.hammer_price for line in sold))
    commission = commission_policy.commission_for(total_sales)

    all_adjustments = _with_commission_vat(adjustments, commission, commission_vat_percent)
    net = _net_payout(seller_id, total_sales, commission, all_adjustments)

    return SettlementStatement(
        settlement_id=settlement_id,
        reference=reference,
        seller_id=seller_id,
        auction_id=auction_id,
        sold_items=tuple(sold),
        unsold_items=tuple(unsold),
        total_sales=total_sales,
        commission=commission,
        adjustments=tuple(all_adjustments),
        net_payout=net,
        status=SettlementStatus.DRAFT,
        generated_at=generated_at,
        commission_description=commission_policy.describe(),
        commission_vat_percent=commission_vat_percent,
    )


def revise_statement(
    statement: SettlementStatement, adjustments: Sequence[Adjustment]
) -> SettlementStatement:
    """
    Replace the manual adjustments of a Draft statement.

    Sales and commission are kept; VAT on commission is re-applied at the
    statement's rate.

    Raises:
        ConflictError: the statement is no longer Draft.
        ValidationError: the revised payout would be negative.
    """

    if statement.status is not SettlementStatus.DRAFT:
        raise ConflictError(
            f"Settlement {statement.reference} is {statement.status.value}; only Draft can be revised",
            current_status=statement.status.value,
        )
    all_adjustments = _with_commission_vat(
        adjustments, statement.commission, statement.commission_vat_percent
    )
    net = _net_payout(statement.seller_id, statement.total_sales, statement.commission, all_adjustments)
    return replace(statement, adjustments=tuple(all_adjustments), net_payout=net)


def _with_commission_vat(
    adjustments: Sequence[Adjustment], commission: int, vat_percent: Optional[Decimal]
) -> list[Adjustment]:
    result = [adj for adj in adjustments if adj.name != VAT_ON_COMMISSION]
    if vat_percent:
        vat = money.multiply_by_rate(commission, vat_percent)
        if vat:
            result.append(Adjustment(name=VAT_ON_COMMISSION, amount=vat, kind=AdjustmentKind.FEE))
    return result


def _net_payout(seller_id: UUID, total_sales: int, commission: int, adjustments: Sequence[Adjustment]) -> int:
    net = total_sales - commission - money.add(*(adj.amount for adj in adjustments))
    if net < 0:
        raise ValidationError(
            f"Net payout for seller {seller_id} would be {money.format_money(net)}; "
            "manual review required"
        )
    return net
