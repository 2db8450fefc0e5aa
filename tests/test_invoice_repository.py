"""
Tests for `repositories/invoice_repository.py`.

The Supabase client is replaced by a recorder that captures the query-builder
chain and replays canned responses, so these check the filters we send and how
rows map back into domain objects.
"""

from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from domain.errors import ValidationError
from domain.invoice import InvoiceStatus
from factories import NOW, make_invoice
from repositories.invoice_repository import DuplicateInvoiceNumberError, InvoiceRepository


class RecordingQuery:
    def __init__(self, client: "RecordingClient", target: str):
        self.client = client
        self.calls = [("from", target)]
        client.queries.append(self)

    def __getattr__(self, name):
        def chain(*args, **kwargs):
            self.calls.append((name, *args))
            return self

        return chain

    def execute(self):
        return SimpleNamespace(data=self.client.responses.pop(0), error=None)


class RecordingClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.queries: list[RecordingQuery] = []

    def table(self, name: str) -> RecordingQuery:
        return RecordingQuery(self, name)

    def rpc(self, name: str, params: dict) -> RecordingQuery:
        query = RecordingQuery(self, name)
        query.calls.append(("params", params))
        return query


def invoice_row(invoice, **overrides):
    row = {
        "id": str(invoice.invoice_id),
        "invoice_number": invoice.invoice_number,
        "buyer_id": str(invoice.buyer_id),
        "auction_id": str(invoice.auction_id),
        "status": "Unpaid",
        "subtotal": invoice.subtotal,
        "buyers_premium": invoice.buyers_premium,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "created_at_utc": "2026-01-19T14:30:05Z",
        "invoice_line_items": [
            {
                "invoice_id": str(invoice.invoice_id),
                "auction_item_id": str(line.auction_item_id),
                "winning_bid_id": str(line.winning_bid_id),
                "hammer_price": line.hammer_price,
                "buyers_premium_share": line.buyers_premium_share,
                "tax_share": line.tax_share,
                "line_total": line.line_total,
            }
            for line in invoice.line_items
        ],
    }
    row.update(overrides)
    return row


def test_get_maps_row_with_line_items() -> None:
    invoice = make_invoice()
    client = RecordingClient([invoice_row(invoice, sent_at_utc="2026-01-19T15:00:00+00:00")])

    loaded = InvoiceRepository(client).get(invoice.invoice_id)

    assert loaded.invoice_id == invoice.invoice_id
    assert loaded.created_at == NOW
    assert loaded.sent_at is not None
    assert loaded.line_items == invoice.line_items
    assert loaded.total_amount == sum(line.line_total for line in loaded.line_items)


def test_get_missing_invoice_returns_none() -> None:
    assert InvoiceRepository(RecordingClient([])).get(uuid4()) is None


def test_transition_is_guarded_on_expected_status() -> None:
    invoice = make_invoice()
    paid_row = invoice_row(invoice, status="Paid", paid_at_utc="2026-01-19T14:30:05+00:00")
    client = RecordingClient([{"id": str(invoice.invoice_id)}], [paid_row])

    updated = InvoiceRepository(client).transition_status(
        invoice.invoice_id,
        expected=InvoiceStatus.UNPAID,
        target=InvoiceStatus.PAID,
        at=NOW,
        automatic_charge_ref="pi_1",
    )

    assert updated.status is InvoiceStatus.PAID
    update = client.queries[0].calls
    assert ("eq", "status", "Unpaid") in update
    payload = next(call[1] for call in update if call[0] == "update")
    assert payload["status"] == "Paid"
    assert payload["automatic_charge_ref"] == "pi_1"
    assert "paid_at_utc" in payload


def test_transition_that_matches_nothing_returns_none() -> None:
    client = RecordingClient([])

    result = InvoiceRepository(client).transition_status(
        uuid4(), expected=InvoiceStatus.UNPAID, target=InvoiceStatus.CANCELLED, at=NOW
    )

    assert result is None
    assert len(client.queries) == 1


def test_mark_sent_only_updates_unsent_rows() -> None:
    client = RecordingClient([])

    assert InvoiceRepository(client).mark_sent(uuid4(), NOW) is False
    assert ("is_", "sent_at_utc", "null") in client.queries[0].calls


def test_create_calls_atomic_function() -> None:
    invoice = make_invoice()
    client = RecordingClient({"success": True, "invoice_id": str(invoice.invoice_id)})

    assert InvoiceRepository(client).create(invoice) == invoice
    params = dict(client.queries[0].calls)["params"]
    assert client.queries[0].calls[0] == ("from", "create_invoice_atomic")
    assert params["p_invoice"]["total_amount"] == invoice.total_amount
    assert len(params["p_line_items"]) == len(invoice.line_items)


@pytest.mark.parametrize(
    "error_code,expected",
    [
        ("DUPLICATE_INVOICE_NUMBER", DuplicateInvoiceNumberError),
        ("ITEM_ALREADY_INVOICED", ValidationError),
        ("SOMETHING_ELSE", RuntimeError),
    ],
)
def test_create_maps_function_errors(error_code, expected) -> None:
    client = RecordingClient({"success": False, "error": error_code})

    with pytest.raises(expected):
        InvoiceRepository(client).create(make_invoice())
