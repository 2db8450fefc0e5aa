"""
Notification dispatcher.

Persists one durable notification per recipient, then pushes a best-effort
real-time event per channel. A push failure is logged and never fails the
caller; the durable rows are the source of truth.

Events raised while a financial state change is in progress are queued with
`defer()` and delivered by `flush()` once that change has been committed.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.notification import (
    Audience,
    NotificationEvent,
    NotificationRecord,
    Recipient,
    push_payload,
    related_ids,
    render,
)
from domain.time import utc_now
from integrations.realtime import RedisPublisher
from repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        repository: NotificationRepository,
        publisher: RedisPublisher,
        admin_ids: Callable[[], Sequence[UUID]],
        *,
        currency: str = "gbp",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._publisher = publisher
        self._admin_ids = admin_ids
        self._currency = currency
        self._clock = clock
        self._pending: List[tuple[NotificationEvent, List[Recipient]]] = []
        self._pending_lock = threading.Lock()

    def recipients(self, owner_id: UUID, include_admins: bool = True) -> List[Recipient]:
        result = [Recipient(owner_id, Audience.OWNER)]
        if include_admins:
            result.extend(Recipient(admin_id, Audience.ADMIN) for admin_id in self._admin_ids())
        return result

    def notify(self, event: NotificationEvent, recipients: Sequence[Recipient]) -> int:
        """
        Persist and push `event` for each recipient.

        Returns the number of durable records written. Store failures raise;
        push failures are logged and swallowed.
        """

        unique: List[Recipient] = []
        seen: set[tuple[UUID, Audience]] = set()
        for recipient in recipients:
            key = (recipient.user_id, recipient.audience)
            if key not in seen:
                seen.add(key)
                unique.append(recipient)
        if not unique:
            return 0

        now = self._clock()
        invoice_id, settlement_id = related_ids(event)
        records: List[NotificationRecord] = []
        pushes: dict[str, tuple[str, dict]] = {}
        for recipient in unique:
            content = render(event, recipient.audience, self._currency)
            records.append(
                NotificationRecord(
                    notification_id=uuid4(),
                    user_id=recipient.user_id,
                    type=content.type,
                    title=content.title,
                    message=content.message,
                    link=content.link,
                    created_at=now,
                    invoice_id=invoice_id,
                    settlement_id=settlement_id,
                )
            )
            # one push per channel; all admins share a channel
            pushes.setdefault(recipient.channel, (content.push_event, push_payload(event, content)))

        self._repository.create_many(records)

        for channel, (event_name, payload) in pushes.items():
            try:
                self._publisher.publish(channel, event_name, payload)
            except Exception:
                logger.warning("Real-time push of %s to %s failed", event_name, channel, exc_info=True)

        return len(records)

    def defer(self, event: NotificationEvent, recipients: Sequence[Recipient]) -> None:
        """Queue an event for delivery after the current state change commits."""

        with self._pending_lock:
            self._pending.append((event, list(recipients)))

    def flush(self) -> int:
        """
        Deliver queued events in order. A failing event is logged and dropped;
        the rest are still delivered. Returns how many events were delivered.
        """

        with self._pending_lock:
            pending, self._pending = self._pending, []
        delivered = 0
        for event, recipients in pending:
            try:
                self.notify(event, recipients)
                delivered += 1
            except Exception:
                logger.exception("Failed to deliver %s notification", event.kind)
        return delivered


def optional_notify(
    dispatcher: Optional[NotificationDispatcher], event: NotificationEvent, owner_id: UUID
) -> None:
    """Queue and immediately flush an owner+admin notification, if a dispatcher is wired."""

    if dispatcher is None:
        return
    dispatcher.defer(event, dispatcher.recipients(owner_id))
    dispatcher.flush()


__all__ = ["NotificationDispatcher", "optional_notify"]
