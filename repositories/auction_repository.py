"""
Auction item and bid repository (read-only).

Items and bids are owned by the bidding subsystem; billing only reads them.
It exposes no write methods.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

from domain.bidding import AuctionItem, Bid
from domain.time import parse_utc_datetime
from repositories.client import Client, check_response, first_row

_ITEMS_TABLE: str = "auction_items"
_BIDS_TABLE: str = "bids"


def _row_to_item(row: Mapping[str, Any]) -> AuctionItem:
    reserve = row.get("reserve_price")
    return AuctionItem(
        item_id=UUID(str(row["id"])),
        auction_id=UUID(str(row["auction_id"])),
        seller_id=UUID(str(row["seller_id"])),
        name=str(row["name"]),
        reserve_price=int(reserve) if reserve is not None else None,
        buyers_premium_percent=Decimal(str(row.get("buyers_premium") or 0)),
        tax_percent=Decimal(str(row.get("tax_percentage") or 0)),
        lot_number=row.get("lot_number"),
    )


def _row_to_bid(row: Mapping[str, Any]) -> Bid:
    return Bid(
        bid_id=UUID(str(row["id"])),
        auction_item_id=UUID(str(row["auction_item_id"])),
        buyer_id=UUID(str(row["user_id"])),
        amount=int(row["amount"]),
        placed_at=parse_utc_datetime(row["created_at_utc"]),
    )


class AuctionRepository:
    def __init__(self, client: Client):
        self._client = client

    def get_item(self, item_id: UUID) -> Optional[AuctionItem]:
        response = (
            self._client.table(_ITEMS_TABLE)
            .select("*")
            .eq("id", str(item_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "fetch auction item")
        return _row_to_item(row) if row else None

    def list_items(self, auction_id: UUID, seller_id: Optional[UUID] = None) -> List[AuctionItem]:
        """All items of an auction, optionally only one seller's."""

        query = self._client.table(_ITEMS_TABLE).select("*").eq("auction_id", str(auction_id))
        if seller_id is not None:
            query = query.eq("seller_id", str(seller_id))
        response = query.order("lot_number").execute()
        return [_row_to_item(row) for row in check_response(response, "list auction items")]

    def list_bids(self, item_ids: Sequence[UUID]) -> List[Bid]:
        if not item_ids:
            return []
        response = (
            self._client.table(_BIDS_TABLE)
            .select("*")
            .in_("auction_item_id", [str(i) for i in item_ids])
            .execute()
        )
        return [_row_to_bid(row) for row in check_response(response, "list bids")]

    def get_bid(self, bid_id: UUID) -> Optional[Bid]:
        response = (
            self._client.table(_BIDS_TABLE)
            .select("*")
            .eq("id", str(bid_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "fetch bid")
        return _row_to_bid(row) if row else None


__all__ = ["AuctionRepository"]
