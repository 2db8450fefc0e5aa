"""
Notification repository (persistence).

The durable notification row is the source of truth for what a user was
told; real-time pushes are best effort on top of it.
"""

from __future__ import annotations

from typing import Any, Sequence

from domain.notification import NotificationRecord
from domain.time import to_iso_utc
from repositories.client import Client, check_response

_NOTIFICATIONS_TABLE: str = "notifications"


def _record_payload(record: NotificationRecord) -> dict[str, Any]:
    return {
        "id": str(record.notification_id),
        "user_id": str(record.user_id),
        "type": record.type,
        "title": record.title,
        "message": record.message,
        "link": record.link,
        "invoice_id": str(record.invoice_id) if record.invoice_id else None,
        "settlement_id": str(record.settlement_id) if record.settlement_id else None,
        "is_read": record.is_read,
        "created_at_utc": to_iso_utc(record.created_at, name="created_at"),
    }


class NotificationRepository:
    def __init__(self, client: Client):
        self._client = client

    def create_many(self, records: Sequence[NotificationRecord]) -> None:
        """Insert all records in one statement (all or nothing)."""

        if not records:
            return
        response = (
            self._client.table(_NOTIFICATIONS_TABLE)
            .insert([_record_payload(r) for r in records])
            .execute()
        )
        check_response(response, "create notifications")


__all__ = ["NotificationRepository"]
