"""
Seller settlement repository (persistence).

Statements are stored with their sold/unsold lines and itemised adjustments
as JSON columns so a statement can be re-rendered exactly as issued.
Status changes are guarded updates on the expected current status.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional
from uuid import UUID

from postgrest.exceptions import APIError

from domain.bidding import ItemDisposition
from domain.errors import ValidationError
from domain.settlement import (
    Adjustment,
    AdjustmentKind,
    SettlementLine,
    SettlementStatement,
    SettlementStatus,
)
from domain.time import parse_optional_utc, parse_utc_datetime, to_iso_utc
from repositories.client import (
    Client,
    check_response,
    first_row,
    is_unique_violation,
    names_constraint,
)

_SETTLEMENTS_TABLE: str = "seller_settlements"
_REFERENCE_CONSTRAINT: str = "seller_settlements_reference_key"


class DuplicateSettlementReferenceError(Exception):
    """The generated reference is taken; retry with a fresh one."""


def _line_to_json(line: SettlementLine) -> dict[str, Any]:
    return {
        "item_id": str(line.item_id),
        "name": line.name,
        "disposition": line.disposition.value,
        "hammer_price": line.hammer_price,
        "high_bid": line.high_bid,
        "reserve_price": line.reserve_price,
        "lot_number": line.lot_number,
    }


def _json_to_line(data: Mapping[str, Any]) -> SettlementLine:
    return SettlementLine(
        item_id=UUID(str(data["item_id"])),
        name=str(data["name"]),
        disposition=ItemDisposition(str(data["disposition"])),
        hammer_price=int(data.get("hammer_price") or 0),
        high_bid=data.get("high_bid"),
        reserve_price=data.get("reserve_price"),
        lot_number=data.get("lot_number"),
    )


def _adjustment_to_json(adj: Adjustment) -> dict[str, Any]:
    return {"name": adj.name, "amount": adj.amount, "kind": adj.kind.value}


def _json_to_adjustment(data: Mapping[str, Any]) -> Adjustment:
    return Adjustment(
        name=str(data["name"]),
        amount=int(data["amount"]),
        kind=AdjustmentKind(str(data.get("kind") or AdjustmentKind.EXPENSE.value)),
    )


def _row_to_statement(row: Mapping[str, Any]) -> SettlementStatement:
    vat = row.get("commission_vat_percent")
    return SettlementStatement(
        settlement_id=UUID(str(row["id"])),
        reference=str(row["reference"]),
        seller_id=UUID(str(row["seller_id"])),
        auction_id=UUID(str(row["auction_id"])),
        sold_items=tuple(_json_to_line(d) for d in row.get("sold_items") or []),
        unsold_items=tuple(_json_to_line(d) for d in row.get("unsold_items") or []),
        total_sales=int(row["total_sales"]),
        commission=int(row["commission"]),
        adjustments=tuple(_json_to_adjustment(d) for d in row.get("adjustments") or []),
        net_payout=int(row["net_payout"]),
        status=SettlementStatus(str(row["status"])),
        generated_at=parse_utc_datetime(row["generated_at_utc"]),
        commission_description=str(row.get("commission_description") or ""),
        commission_vat_percent=Decimal(str(vat)) if vat is not None else None,
        sent_at=parse_optional_utc(row.get("sent_at_utc")),
        paid_at=parse_optional_utc(row.get("paid_at_utc")),
    )


def _figures_payload(statement: SettlementStatement) -> dict[str, Any]:
    vat = statement.commission_vat_percent
    return {
        "total_sales": statement.total_sales,
        "commission": statement.commission,
        "commission_description": statement.commission_description,
        "commission_vat_percent": str(vat) if vat is not None else None,
        "adjustments": [_adjustment_to_json(a) for a in statement.adjustments],
        "sold_items": [_line_to_json(line) for line in statement.sold_items],
        "unsold_items": [_line_to_json(line) for line in statement.unsold_items],
        "net_payout": statement.net_payout,
        "generated_at_utc": to_iso_utc(statement.generated_at, name="generated_at"),
    }


class SettlementRepository:
    def __init__(self, client: Client):
        self._client = client

    def create(self, statement: SettlementStatement) -> SettlementStatement:
        """
        Insert a Draft statement.

        Raises:
            ValidationError: a statement already exists for this seller and auction.
        """

        payload = {
            "id": str(statement.settlement_id),
            "reference": statement.reference,
            "seller_id": str(statement.seller_id),
            "auction_id": str(statement.auction_id),
            "status": statement.status.value,
            **_figures_payload(statement),
        }
        try:
            response = self._client.table(_SETTLEMENTS_TABLE).insert(payload).execute()
        except APIError as exc:
            if is_unique_violation(exc) and names_constraint(exc, _REFERENCE_CONSTRAINT):
                raise DuplicateSettlementReferenceError(statement.reference) from exc
            if is_unique_violation(exc):
                raise ValidationError(
                    f"A settlement already exists for seller {statement.seller_id} "
                    f"in auction {statement.auction_id}"
                ) from exc
            raise RuntimeError(f"Failed to create settlement: {exc}") from exc
        check_response(response, "create settlement")
        return statement

    def get(self, settlement_id: UUID) -> Optional[SettlementStatement]:
        response = (
            self._client.table(_SETTLEMENTS_TABLE)
            .select("*")
            .eq("id", str(settlement_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "fetch settlement")
        return _row_to_statement(row) if row else None

    def find(self, seller_id: UUID, auction_id: UUID) -> Optional[SettlementStatement]:
        response = (
            self._client.table(_SETTLEMENTS_TABLE)
            .select("*")
            .eq("seller_id", str(seller_id))
            .eq("auction_id", str(auction_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "find settlement")
        return _row_to_statement(row) if row else None

    def list_for_seller(self, seller_id: UUID) -> List[SettlementStatement]:
        response = (
            self._client.table(_SETTLEMENTS_TABLE)
            .select("*")
            .eq("seller_id", str(seller_id))
            .order("generated_at_utc", desc=True)
            .execute()
        )
        return [_row_to_statement(row) for row in check_response(response, "list settlements")]

    def replace_draft(self, statement: SettlementStatement) -> bool:
        """Overwrite the figures of a statement that is still Draft."""

        response = (
            self._client.table(_SETTLEMENTS_TABLE)
            .update(_figures_payload(statement))
            .eq("id", str(statement.settlement_id))
            .eq("status", SettlementStatus.DRAFT.value)
            .execute()
        )
        return bool(check_response(response, "update settlement"))

    def transition_status(
        self,
        settlement_id: UUID,
        *,
        expected: SettlementStatus,
        target: SettlementStatus,
        at: datetime,
    ) -> Optional[SettlementStatement]:
        payload: dict[str, Any] = {"status": target.value}
        if target is SettlementStatus.SENT:
            payload["sent_at_utc"] = to_iso_utc(at, name="sent_at")
        elif target is SettlementStatus.PAID:
            payload["paid_at_utc"] = to_iso_utc(at, name="paid_at")

        response = (
            self._client.table(_SETTLEMENTS_TABLE)
            .update(payload)
            .eq("id", str(settlement_id))
            .eq("status", expected.value)
            .execute()
        )
        if not check_response(response, "update settlement status"):
            return None
        return self.get(settlement_id)


__all__ = ["DuplicateSettlementReferenceError", "SettlementRepository"]
