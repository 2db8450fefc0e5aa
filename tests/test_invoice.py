"""
Tests for `domain/invoice.py`.

Covers contract rules:
- Invoice totals equal subtotal + premium + tax and the sum of line totals.
- Building an invoice validates the winning bid against item, buyer and reserve.
- Status transitions only leave Unpaid.
- paid_at is set iff the invoice is Paid.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.bidding import WinningBid
from domain.errors import ConflictError, ValidationError
from domain.invoice import (
    InvoiceStatus,
    LineItem,
    SellerTerms,
    build_invoice,
    ensure_transition,
    generate_invoice_number,
)
from factories import AUCTION_ID, BUYER_ID, NOW, make_bid, make_invoice, make_item


def _lot(item, amount, buyer_id=BUYER_ID):
    return (WinningBid.from_bid(make_bid(item, amount, buyer_id=buyer_id)), item, SellerTerms.for_item(item))


def test_single_lot_invoice_matches_worked_example() -> None:
    invoice = make_invoice(10000, premium="10", tax="20")

    assert invoice.status is InvoiceStatus.UNPAID
    assert invoice.subtotal == 10000
    assert invoice.buyers_premium == 1000
    assert invoice.tax_amount == 2200
    assert invoice.total_amount == 13200
    assert [li.line_total for li in invoice.line_items] == [13200]
    assert invoice.paid_at is None and invoice.sent_at is None


def test_multi_lot_invoice_rounds_per_line_and_sums_exactly() -> None:
    items = [make_item(premium="12.5", tax="17.5") for _ in range(3)]
    lots = [_lot(item, amount) for item, amount in zip(items, (333, 1001, 77))]

    invoice = build_invoice(
        invoice_id=uuid4(),
        invoice_number="INV-1",
        buyer_id=BUYER_ID,
        auction_id=AUCTION_ID,
        lots=lots,
        created_at=NOW,
    )

    assert len(invoice.line_items) == 3
    assert sum(li.line_total for li in invoice.line_items) == invoice.total_amount
    assert invoice.subtotal == 333 + 1001 + 77
    for line in invoice.line_items:
        premium_and_hammer = line.hammer_price + line.buyers_premium_share
        assert line.line_total == premium_and_hammer + line.tax_share


def test_build_rejects_bid_from_another_buyer() -> None:
    item = make_item()
    with pytest.raises(ValidationError):
        build_invoice(
            invoice_id=uuid4(),
            invoice_number="INV-1",
            buyer_id=BUYER_ID,
            auction_id=AUCTION_ID,
            lots=[_lot(item, 5000, buyer_id=uuid4())],
            created_at=NOW,
        )


def test_build_rejects_bid_below_reserve() -> None:
    item = make_item(reserve=8000)
    with pytest.raises(ValidationError, match="below reserve"):
        build_invoice(
            invoice_id=uuid4(),
            invoice_number="INV-1",
            buyer_id=BUYER_ID,
            auction_id=AUCTION_ID,
            lots=[_lot(item, 5000)],
            created_at=NOW,
        )


def test_build_rejects_empty_and_duplicate_lots() -> None:
    with pytest.raises(ValidationError):
        build_invoice(
            invoice_id=uuid4(),
            invoice_number="INV-1",
            buyer_id=BUYER_ID,
            auction_id=AUCTION_ID,
            lots=[],
            created_at=NOW,
        )

    item = make_item()
    with pytest.raises(ValidationError, match="twice"):
        build_invoice(
            invoice_id=uuid4(),
            invoice_number="INV-1",
            buyer_id=BUYER_ID,
            auction_id=AUCTION_ID,
            lots=[_lot(item, 5000), _lot(item, 5000)],
            created_at=NOW,
        )


def test_line_item_total_must_add_up() -> None:
    with pytest.raises(ValueError):
        LineItem(
            invoice_id=uuid4(),
            auction_item_id=uuid4(),
            hammer_price=10000,
            buyers_premium_share=1000,
            tax_share=2200,
            line_total=13199,
        )


def test_invoice_total_must_match_lines() -> None:
    invoice = make_invoice(10000)
    with pytest.raises(ValueError):
        replace(invoice, tax_amount=2201, total_amount=13201)


def test_paid_at_set_iff_paid() -> None:
    invoice = make_invoice()
    with pytest.raises(ValueError):
        replace(invoice, status=InvoiceStatus.PAID)
    with pytest.raises(ValueError):
        replace(invoice, paid_at=NOW)

    paid = replace(invoice, status=InvoiceStatus.PAID, paid_at=NOW)
    assert not paid.is_open


def test_invoice_created_at_must_be_utc() -> None:
    with pytest.raises(ValueError):
        make_invoice(created_at=datetime(2026, 1, 1, 12, 0, 0))


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (InvoiceStatus.UNPAID, InvoiceStatus.PAID, True),
        (InvoiceStatus.UNPAID, InvoiceStatus.CANCELLED, True),
        (InvoiceStatus.PAID, InvoiceStatus.CANCELLED, False),
        (InvoiceStatus.PAID, InvoiceStatus.UNPAID, False),
        (InvoiceStatus.CANCELLED, InvoiceStatus.PAID, False),
    ],
)
def test_transition_table(current, target, allowed) -> None:
    if allowed:
        ensure_transition(current, target)
    else:
        with pytest.raises(ConflictError):
            ensure_transition(current, target)


def test_invoice_number_format() -> None:
    number = generate_invoice_number(NOW)

    assert re.fullmatch(r"INV-20260119143005-[A-Z0-9]{6}", number)


def test_seller_terms_default_from_item() -> None:
    terms = SellerTerms.for_item(make_item(premium="15", tax="5"))

    assert terms == SellerTerms(Decimal("15"), Decimal("5"))
    with pytest.raises(ValidationError):
        SellerTerms(Decimal("-1"), Decimal("0"))
