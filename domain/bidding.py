"""
Domain: auction items and bids, as read by the billing core.

Bids and auction items are owned by the bidding subsystem. The billing core
only reads them: it never mutates a bid or an item record.

Rules implemented here:
- The high bid on an item is the largest amount; ties go to the earliest bid.
- An item is SOLD iff a high bid exists and it meets the reserve (or there is
  no reserve). A high bid below reserve is NOT a sale.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class AuctionItem:
    """
    A lot in an auction, with the fee terms and reserve that apply to it.

    Money fields are minor units; percentages are Decimals (e.g. Decimal("20")).
    """

    item_id: UUID
    auction_id: UUID
    seller_id: UUID
    name: str
    reserve_price: Optional[int] = None
    buyers_premium_percent: Decimal = Decimal("0")
    tax_percent: Decimal = Decimal("0")
    lot_number: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Bid:
    bid_id: UUID
    auction_item_id: UUID
    buyer_id: UUID
    amount: int
    placed_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("placed_at", self.placed_at)


@dataclass(frozen=True, slots=True)
class WinningBid:
    """
    Accepted winning bid handed to the billing core. Immutable fact.

    `bid_id` is optional because callers may hand over a winning bid decided
    elsewhere without its row id.
    """

    auction_item_id: UUID
    buyer_id: UUID
    amount: int
    placed_at: datetime
    bid_id: Optional[UUID] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("placed_at", self.placed_at)

    @staticmethod
    def from_bid(bid: Bid) -> "WinningBid":
        return WinningBid(
            auction_item_id=bid.auction_item_id,
            buyer_id=bid.buyer_id,
            amount=bid.amount,
            placed_at=bid.placed_at,
            bid_id=bid.bid_id,
        )


class ItemDisposition(str, Enum):
    SOLD = "Sold"
    UNSOLD_NO_BIDS = "UnsoldNoBids"
    UNSOLD_BELOW_RESERVE = "UnsoldBelowReserve"


def high_bid(bids: Iterable[Bid]) -> Optional[Bid]:
    """Highest amount wins; on equal amounts the earliest placed bid wins."""

    best: Optional[Bid] = None
    for bid in bids:
        if best is None:
            best = bid
        elif bid.amount > best.amount:
            best = bid
        elif bid.amount == best.amount and bid.placed_at < best.placed_at:
            best = bid
    return best


def meets_reserve(item: AuctionItem, amount: int) -> bool:
    return item.reserve_price is None or amount >= item.reserve_price


def classify_item(item: AuctionItem, bids: Iterable[Bid]) -> tuple[ItemDisposition, Optional[Bid]]:
    """Return exactly one disposition for the item plus its high bid (if any)."""

    top = high_bid(b for b in bids if b.auction_item_id == item.item_id)
    if top is None:
        return ItemDisposition.UNSOLD_NO_BIDS, None
    if not meets_reserve(item, top.amount):
        return ItemDisposition.UNSOLD_BELOW_RESERVE, top
    return ItemDisposition.SOLD, top
