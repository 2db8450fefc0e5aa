"""
Tests for `services/invoice_dispatch_service.py`.

Covers contract rules:
- Every Unpaid, never-sent invoice of the auction is reconciled, notified
  and marked sent.
- One failing invoice is reported and the batch carries on.
- Already-sent invoices are skipped without a second pay link.
- An invoice settled before its send is skipped and nobody is notified.
- Collecting payment outside a send notifies the buyer but leaves sent_at alone.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from domain.errors import GatewayError
from domain.invoice import InvoiceStatus
from domain.payment import ReconcileOutcome
from factories import ADMIN_ID, AUCTION_ID, NOW, make_buyer, make_card, make_invoice
from services.invoice_dispatch_service import SendStatus


def _seed(invoice_repo, buyer_repo, count, *, cards=()):
    invoices = []
    for n in range(count):
        buyer = make_buyer(uuid4(), cards=cards)
        buyer_repo.buyers[buyer.buyer_id] = buyer
        invoices.append(
            invoice_repo.add(make_invoice(1000 * (n + 1), buyer_id=buyer.buyer_id, created_at=NOW + timedelta(seconds=n)))
        )
    return invoices


def test_batch_isolates_a_failing_invoice(dispatcher, invoice_repo, buyer_repo, gateway) -> None:
    invoices = _seed(invoice_repo, buyer_repo, 5)
    bad = invoices[2]
    gateway.fail_invoices.add(str(bad.invoice_id))

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    assert result.sent_count == 4
    assert result.failed_count == 1
    [failed] = result.failed
    assert failed.invoice_id == bad.invoice_id
    assert failed.reason
    # invoices after the failing one were still processed
    assert {s.invoice_id for s in result.sent} == {inv.invoice_id for inv in invoices if inv is not bad}
    assert invoice_repo.get(invoices[4].invoice_id).sent_at is not None
    assert invoice_repo.get(bad.invoice_id).sent_at is None
    assert invoice_repo.get(bad.invoice_id).status is InvoiceStatus.UNPAID


def test_failed_invoice_is_picked_up_by_the_next_run(dispatcher, invoice_repo, buyer_repo, gateway) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)
    gateway.link_error = GatewayError("Stripe unavailable", retryable=True)
    assert dispatcher.send_all_for_auction(AUCTION_ID).failed_count == 1

    gateway.link_error = None
    retry = dispatcher.send_all_for_auction(AUCTION_ID)

    assert [s.invoice_id for s in retry.sent] == [invoice.invoice_id]


def test_card_buyers_are_charged_and_notified(dispatcher, invoice_repo, buyer_repo, notification_repo) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1, cards=[make_card()])

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    [sent] = result.sent
    assert sent.outcome is ReconcileOutcome.CHARGED
    stored = invoice_repo.get(invoice.invoice_id)
    assert stored.status is InvoiceStatus.PAID
    assert stored.sent_at is not None
    types = sorted((r.user_id == ADMIN_ID, r.title) for r in notification_repo.records)
    assert types == [(False, f"Invoice {invoice.invoice_number}"), (True, "Invoice Generated")]
    buyer_record = next(r for r in notification_repo.records if r.user_id == invoice.buyer_id)
    assert "charged to your saved card" in buyer_record.message


def test_already_sent_invoice_is_skipped(dispatcher, invoice_repo, buyer_repo, gateway) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)
    dispatcher.send_all_for_auction(AUCTION_ID)
    assert len(gateway.links) == 1

    status, sent = dispatcher.send_invoice(invoice.invoice_id)
    again = dispatcher.send_all_for_auction(AUCTION_ID)

    assert status is SendStatus.SKIPPED and sent is None
    assert again.sent_count == 0 and again.failed_count == 0
    assert len(gateway.links) == 1


def test_send_single_invoice(dispatcher, invoice_repo, buyer_repo) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)

    status, sent = dispatcher.send_invoice(invoice.invoice_id)

    assert status is SendStatus.SENT
    assert sent.outcome is ReconcileOutcome.LINK_ISSUED
    assert sent.payment_link_url is not None


def test_paid_and_cancelled_invoices_are_not_sent(dispatcher, manager, invoice_repo, buyer_repo, gateway) -> None:
    paid, cancelled, open_ = _seed(invoice_repo, buyer_repo, 3)
    manager.mark_paid(paid.invoice_id, "manual")
    manager.cancel(cancelled.invoice_id)

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    assert [s.invoice_id for s in result.sent] == [open_.invoice_id]
    assert len(gateway.links) == 1


def test_missing_buyer_is_a_failure(dispatcher, invoice_repo) -> None:
    invoice = invoice_repo.add(make_invoice(buyer_id=uuid4()))

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    assert [f.invoice_id for f in result.failed] == [invoice.invoice_id]


def test_claimed_invoice_is_skipped(dispatcher, invoice_repo, buyer_repo, attempt_repo, clock) -> None:
    from domain.payment import PaymentMethodKind

    [invoice] = _seed(invoice_repo, buyer_repo, 1)
    attempt_repo.claim(
        invoice.invoice_id, PaymentMethodKind.PAY_LINK, started_at=clock(), stale_before=clock() - timedelta(minutes=10)
    )

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    assert result.skipped == [invoice.invoice_id]
    assert result.failed == []


def test_invoice_paid_before_send_is_skipped_silently(
    dispatcher, manager, invoice_repo, buyer_repo, notification_repo, gateway, monkeypatch
) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)
    stale = invoice_repo.get(invoice.invoice_id)
    # listed as Unpaid, then confirmed offline before the reconcile claim
    manager.mark_paid(invoice.invoice_id, "manual", notify=False)
    monkeypatch.setattr(manager, "list_unsent", lambda auction_id: [stale])

    result = dispatcher.send_all_for_auction(AUCTION_ID)

    assert result.sent == [] and result.failed == []
    assert result.skipped == [invoice.invoice_id]
    assert notification_repo.records == []
    assert gateway.links == []
    assert invoice_repo.get(invoice.invoice_id).sent_at is None


def test_collect_payment_charges_and_notifies(dispatcher, invoice_repo, buyer_repo, notification_repo) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1, cards=[make_card()])

    reconciled = dispatcher.collect_payment(invoice.invoice_id)

    assert reconciled.outcome is ReconcileOutcome.CHARGED
    stored = invoice_repo.get(invoice.invoice_id)
    assert stored.status is InvoiceStatus.PAID
    assert stored.sent_at is None
    buyer_record = next(r for r in notification_repo.records if r.user_id == invoice.buyer_id)
    assert "charged to your saved card" in buyer_record.message
    assert any(r.user_id == ADMIN_ID for r in notification_repo.records)


def test_collect_payment_pushes_pay_link(dispatcher, invoice_repo, buyer_repo, publisher) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)

    reconciled = dispatcher.collect_payment(invoice.invoice_id)

    assert reconciled.outcome is ReconcileOutcome.LINK_ISSUED
    pushed = [payload for _, _, payload in publisher.messages if payload.get("payment_link_url")]
    assert pushed
    assert pushed[0]["payment_link_url"] == reconciled.payment_link_url


def test_collect_payment_on_settled_invoice_does_not_notify(
    dispatcher, manager, invoice_repo, buyer_repo, notification_repo
) -> None:
    [invoice] = _seed(invoice_repo, buyer_repo, 1)
    manager.mark_paid(invoice.invoice_id, "manual", notify=False)

    reconciled = dispatcher.collect_payment(invoice.invoice_id)

    assert reconciled.outcome is ReconcileOutcome.ALREADY_SETTLED
    assert notification_repo.records == []
