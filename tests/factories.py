"""Builders for domain objects used across the tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID, uuid4

from domain.bidding import AuctionItem, Bid, WinningBid
from domain.buyer import Buyer, PaymentMethod
from domain.invoice import Invoice, SellerTerms, build_invoice

NOW = datetime(2026, 1, 19, 14, 30, 5, tzinfo=timezone.utc)

AUCTION_ID = UUID("00000000-0000-0000-0000-00000000a001")
SELLER_ID = UUID("00000000-0000-0000-0000-00000000b001")
BUYER_ID = UUID("00000000-0000-0000-0000-00000000c001")
ADMIN_ID = UUID("00000000-0000-0000-0000-00000000d001")


class FixedClock:
    """Callable clock; `advance()` moves it forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_item(
    *,
    reserve: Optional[int] = None,
    premium: str = "10",
    tax: str = "20",
    seller_id: UUID = SELLER_ID,
    auction_id: UUID = AUCTION_ID,
    name: str = "Oak bureau",
    lot_number: Optional[str] = None,
) -> AuctionItem:
    return AuctionItem(
        item_id=uuid4(),
        auction_id=auction_id,
        seller_id=seller_id,
        name=name,
        reserve_price=reserve,
        buyers_premium_percent=Decimal(premium),
        tax_percent=Decimal(tax),
        lot_number=lot_number,
    )


def make_bid(item: AuctionItem, amount: int, buyer_id: UUID = BUYER_ID, minutes: int = 0) -> Bid:
    return Bid(
        bid_id=uuid4(),
        auction_item_id=item.item_id,
        buyer_id=buyer_id,
        amount=amount,
        placed_at=NOW - timedelta(hours=1) + timedelta(minutes=minutes),
    )


def make_card(
    ref: str = "pm_card_visa",
    *,
    exp_year: int = 2030,
    exp_month: int = 12,
    is_default: bool = False,
    added_days_ago: int = 30,
) -> PaymentMethod:
    return PaymentMethod(
        method_ref=ref,
        brand="visa",
        last4="4242",
        exp_month=exp_month,
        exp_year=exp_year,
        created_at=NOW - timedelta(days=added_days_ago),
        is_default=is_default,
    )


def make_buyer(
    buyer_id: UUID = BUYER_ID,
    *,
    cards: Sequence[PaymentMethod] = (),
    customer_ref: Optional[str] = "cus_existing",
) -> Buyer:
    return Buyer(
        buyer_id=buyer_id,
        email=f"{buyer_id.hex[:6]}@example.com",
        first_name="Ada",
        last_name="Lovelace",
        gateway_customer_ref=customer_ref,
        payment_methods=tuple(cards),
    )


def make_invoice(
    hammer: int = 10000,
    *,
    buyer_id: UUID = BUYER_ID,
    auction_id: UUID = AUCTION_ID,
    premium: str = "10",
    tax: str = "20",
    created_at: datetime = NOW,
) -> Invoice:
    item = make_item(premium=premium, tax=tax, auction_id=auction_id)
    bid = make_bid(item, hammer, buyer_id=buyer_id)
    return build_invoice(
        invoice_id=uuid4(),
        invoice_number=f"INV-{created_at:%Y%m%d%H%M%S}-{uuid4().hex[:6].upper()}",
        buyer_id=buyer_id,
        auction_id=auction_id,
        lots=[(WinningBid.from_bid(bid), item, SellerTerms.for_item(item))],
        created_at=created_at,
    )
