"""
Invoice repository (persistence).

Persistence for Invoice and LineItem. Status changes are guarded updates: the
UPDATE carries the expected current status in its WHERE clause, so only one
writer can win a transition even across processes. A guarded update that
matches no row returns None; the caller decides what that means.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional
from uuid import UUID

from postgrest.exceptions import APIError

from domain.errors import ValidationError
from domain.invoice import Invoice, InvoiceStatus, LineItem
from domain.time import parse_optional_utc, parse_utc_datetime, to_iso_utc
from repositories.client import Client, check_response, first_row

_INVOICES_TABLE: str = "invoices"
_LINE_ITEMS_TABLE: str = "invoice_line_items"
_SELECT_WITH_LINES: str = f"*, {_LINE_ITEMS_TABLE}(*)"


class DuplicateInvoiceNumberError(Exception):
    """The generated invoice number already exists; generate another and retry."""


def _row_to_line_item(row: Mapping[str, Any]) -> LineItem:
    return LineItem(
        invoice_id=UUID(str(row["invoice_id"])),
        auction_item_id=UUID(str(row["auction_item_id"])),
        winning_bid_id=UUID(str(row["winning_bid_id"])) if row.get("winning_bid_id") else None,
        hammer_price=int(row["hammer_price"]),
        buyers_premium_share=int(row["buyers_premium_share"]),
        tax_share=int(row["tax_share"]),
        line_total=int(row["line_total"]),
    )


def _row_to_invoice(row: Mapping[str, Any]) -> Invoice:
    """Convert a Supabase row (optionally with embedded line items) into an Invoice."""

    lines = row.get(_LINE_ITEMS_TABLE) or []
    return Invoice(
        invoice_id=UUID(str(row["id"])),
        invoice_number=str(row["invoice_number"]),
        buyer_id=UUID(str(row["buyer_id"])),
        auction_id=UUID(str(row["auction_id"])),
        status=InvoiceStatus(str(row["status"])),
        subtotal=int(row["subtotal"]),
        buyers_premium=int(row["buyers_premium"]),
        tax_amount=int(row["tax_amount"]),
        total_amount=int(row["total_amount"]),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        line_items=tuple(_row_to_line_item(li) for li in lines),
        sent_at=parse_optional_utc(row.get("sent_at_utc")),
        paid_at=parse_optional_utc(row.get("paid_at_utc")),
        cancelled_at=parse_optional_utc(row.get("cancelled_at_utc")),
        payment_link_ref=row.get("payment_link_ref"),
        payment_link_url=row.get("payment_link_url"),
        automatic_charge_ref=row.get("automatic_charge_ref"),
        notes=row.get("notes"),
    )


def _invoice_payload(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": str(invoice.invoice_id),
        "invoice_number": invoice.invoice_number,
        "buyer_id": str(invoice.buyer_id),
        "auction_id": str(invoice.auction_id),
        "subtotal": invoice.subtotal,
        "buyers_premium": invoice.buyers_premium,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "created_at_utc": to_iso_utc(invoice.created_at, name="created_at"),
        "notes": invoice.notes,
    }


def _line_item_payload(line: LineItem) -> dict[str, Any]:
    return {
        "auction_item_id": str(line.auction_item_id),
        "winning_bid_id": str(line.winning_bid_id) if line.winning_bid_id else None,
        "hammer_price": line.hammer_price,
        "buyers_premium_share": line.buyers_premium_share,
        "tax_share": line.tax_share,
        "line_total": line.line_total,
    }


def _rpc_result(response: Any) -> Mapping[str, Any]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to create invoice: {error}")
    return getattr(response, "data", None) or {}


class InvoiceRepository:
    def __init__(self, client: Client):
        self._client = client

    def create(self, invoice: Invoice) -> Invoice:
        """
        Insert an invoice and its line items atomically via create_invoice_atomic().

        Raises:
            DuplicateInvoiceNumberError: invoice_number is already taken.
            ValidationError: one of the items is already on another invoice.
        """

        params = {
            "p_invoice": _invoice_payload(invoice),
            "p_line_items": [_line_item_payload(li) for li in invoice.line_items],
        }
        try:
            result = _rpc_result(self._client.rpc("create_invoice_atomic", params).execute())
        except APIError as exc:
            # supabase-py raises APIError for some JSON function results,
            # including successful ones.
            details = exc.json() if callable(getattr(exc, "json", None)) else {}
            if not isinstance(details, Mapping) or "success" not in details:
                raise RuntimeError(f"Failed to create invoice: {exc}") from exc
            result = details

        if result.get("success"):
            return invoice
        error_code = result.get("error")
        if error_code == "DUPLICATE_INVOICE_NUMBER":
            raise DuplicateInvoiceNumberError(invoice.invoice_number)
        if error_code == "ITEM_ALREADY_INVOICED":
            raise ValidationError("One or more items have already been invoiced")
        raise RuntimeError(f"Failed to create invoice: {result.get('message') or error_code}")

    def get(self, invoice_id: UUID) -> Optional[Invoice]:
        response = (
            self._client.table(_INVOICES_TABLE)
            .select(_SELECT_WITH_LINES)
            .eq("id", str(invoice_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "get invoice")
        return _row_to_invoice(row) if row else None

    def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        response = (
            self._client.table(_INVOICES_TABLE)
            .select(_SELECT_WITH_LINES)
            .eq("invoice_number", invoice_number)
            .limit(1)
            .execute()
        )
        row = first_row(response, "get invoice by number")
        return _row_to_invoice(row) if row else None

    def list_for_auction(self, auction_id: UUID) -> List[Invoice]:
        response = (
            self._client.table(_INVOICES_TABLE)
            .select(_SELECT_WITH_LINES)
            .eq("auction_id", str(auction_id))
            .order("created_at_utc")
            .execute()
        )
        return [_row_to_invoice(row) for row in check_response(response, "list invoices")]

    def list_unsent_unpaid(self, auction_id: UUID) -> List[Invoice]:
        """Unpaid invoices of an auction that have never been sent, oldest first."""

        response = (
            self._client.table(_INVOICES_TABLE)
            .select(_SELECT_WITH_LINES)
            .eq("auction_id", str(auction_id))
            .eq("status", InvoiceStatus.UNPAID.value)
            .is_("sent_at_utc", "null")
            .order("created_at_utc")
            .execute()
        )
        return [_row_to_invoice(row) for row in check_response(response, "list unsent invoices")]

    def buyer_ids_with_invoices(self, auction_id: UUID) -> set[UUID]:
        response = (
            self._client.table(_INVOICES_TABLE)
            .select("buyer_id")
            .eq("auction_id", str(auction_id))
            .execute()
        )
        return {UUID(str(row["buyer_id"])) for row in check_response(response, "list invoiced buyers")}

    def transition_status(
        self,
        invoice_id: UUID,
        *,
        expected: InvoiceStatus,
        target: InvoiceStatus,
        at: datetime,
        automatic_charge_ref: Optional[str] = None,
    ) -> Optional[Invoice]:
        """
        Compare-and-swap the status. Returns the updated invoice, or None when
        the invoice was not in `expected` status (or does not exist).
        """

        payload: dict[str, Any] = {"status": target.value}
        if target is InvoiceStatus.PAID:
            payload["paid_at_utc"] = to_iso_utc(at, name="paid_at")
            if automatic_charge_ref is not None:
                payload["automatic_charge_ref"] = automatic_charge_ref
        elif target is InvoiceStatus.CANCELLED:
            payload["cancelled_at_utc"] = to_iso_utc(at, name="cancelled_at")

        response = (
            self._client.table(_INVOICES_TABLE)
            .update(payload)
            .eq("id", str(invoice_id))
            .eq("status", expected.value)
            .execute()
        )
        if not check_response(response, "update invoice status"):
            return None
        return self.get(invoice_id)

    def mark_sent(self, invoice_id: UUID, sent_at: datetime) -> bool:
        """Set sent_at only if it is still NULL. Returns False when already sent."""

        response = (
            self._client.table(_INVOICES_TABLE)
            .update({"sent_at_utc": to_iso_utc(sent_at, name="sent_at")})
            .eq("id", str(invoice_id))
            .is_("sent_at_utc", "null")
            .execute()
        )
        return bool(check_response(response, "mark invoice sent"))

    def record_payment_link(self, invoice_id: UUID, link_ref: str, url: str) -> bool:
        """Attach a pay link to an invoice that is still Unpaid."""

        response = (
            self._client.table(_INVOICES_TABLE)
            .update({"payment_link_ref": link_ref, "payment_link_url": url})
            .eq("id", str(invoice_id))
            .eq("status", InvoiceStatus.UNPAID.value)
            .execute()
        )
        return bool(check_response(response, "record payment link"))


__all__ = ["InvoiceRepository", "DuplicateInvoiceNumberError"]
