"""
Tests for `services/notification_service.py` and `domain/notification.py`.

Covers contract rules:
- One durable record per recipient; pushes go per channel.
- A failed real-time push never fails the caller.
- Deferred events are delivered by flush(), in order.
"""

from __future__ import annotations

from uuid import uuid4

import pytest

from domain.notification import (
    ADMIN_CHANNEL,
    Audience,
    InvoiceIssued,
    Recipient,
    SettlementIssued,
    render,
    user_channel,
)
from factories import ADMIN_ID, AUCTION_ID, BUYER_ID
from fakes import FakeNotificationRepository, FakePublisher
from services.notification_service import NotificationDispatcher


def _issued(**overrides) -> InvoiceIssued:
    data = dict(
        invoice_id=uuid4(),
        invoice_number="INV-20260119143005-ABC123",
        auction_id=AUCTION_ID,
        buyer_id=BUYER_ID,
        buyer_email="ada@example.com",
        total_amount=13200,
        items_count=1,
    )
    data.update(overrides)
    return InvoiceIssued(**data)


def test_notify_persists_per_recipient_and_pushes_per_channel(notifier, notification_repo, publisher) -> None:
    second_admin = uuid4()
    event = _issued()

    written = notifier.notify(
        event,
        [
            Recipient(BUYER_ID),
            Recipient(ADMIN_ID, Audience.ADMIN),
            Recipient(second_admin, Audience.ADMIN),
            Recipient(BUYER_ID),
        ],
    )

    assert written == 3
    assert {r.user_id for r in notification_repo.records} == {BUYER_ID, ADMIN_ID, second_admin}
    assert all(r.invoice_id == event.invoice_id for r in notification_repo.records)
    channels = [channel for channel, _, _ in publisher.messages]
    assert channels == [user_channel(BUYER_ID), ADMIN_CHANNEL]
    _, event_name, payload = publisher.messages[0]
    assert event_name == "invoice-created"
    assert payload["kind"] == "invoice_issued"
    assert payload["invoice_number"] == event.invoice_number


def test_push_failure_is_swallowed(notification_repo, buyer_repo, clock) -> None:
    dispatcher = NotificationDispatcher(
        notification_repo, FakePublisher(fail=True), buyer_repo.list_admin_ids, clock=clock
    )

    written = dispatcher.notify(_issued(), dispatcher.recipients(BUYER_ID))

    assert written == 2
    assert len(notification_repo.records) == 2


def test_store_failure_raises(publisher, buyer_repo, clock) -> None:
    dispatcher = NotificationDispatcher(
        FakeNotificationRepository(fail=True), publisher, buyer_repo.list_admin_ids, clock=clock
    )

    with pytest.raises(RuntimeError):
        dispatcher.notify(_issued(), [Recipient(BUYER_ID)])
    assert publisher.messages == []


def test_deferred_events_flush_in_order(notifier, notification_repo) -> None:
    first, second = _issued(), _issued()
    notifier.defer(first, [Recipient(BUYER_ID)])
    notifier.defer(second, [Recipient(BUYER_ID)])

    assert notification_repo.records == []
    assert notifier.flush() == 2
    assert [r.invoice_id for r in notification_repo.records] == [first.invoice_id, second.invoice_id]
    assert notifier.flush() == 0


def test_flush_continues_after_a_failing_event(publisher, buyer_repo, clock) -> None:
    repo = FakeNotificationRepository(fail=True)
    dispatcher = NotificationDispatcher(repo, publisher, buyer_repo.list_admin_ids, clock=clock)
    dispatcher.defer(_issued(), [Recipient(BUYER_ID)])

    assert dispatcher.flush() == 0
    repo.fail = False
    assert dispatcher.flush() == 0
    assert repo.records == []


def test_recipients_include_admins(notifier) -> None:
    recipients = notifier.recipients(BUYER_ID)

    assert recipients == [Recipient(BUYER_ID, Audience.OWNER), Recipient(ADMIN_ID, Audience.ADMIN)]
    assert notifier.recipients(BUYER_ID, include_admins=False) == [Recipient(BUYER_ID)]


def test_render_differs_by_audience_and_charge() -> None:
    charged = _issued(auto_charged=True)

    owner = render(charged, Audience.OWNER)
    admin = render(charged, Audience.ADMIN)

    assert "charged to your saved card" in owner.message
    assert "£132.00" in owner.message
    assert owner.link == f"/invoice/{charged.invoice_id}"
    assert "ada@example.com" in admin.message


def test_settlement_event_renders_payout() -> None:
    event = SettlementIssued(
        settlement_id=uuid4(), reference="SET-2026-ABC123", seller_id=uuid4(), net_payout=17000, item_count=2
    )

    content = render(event, Audience.OWNER)

    assert content.push_event == "settlement-issued"
    assert "£170.00" in content.message
