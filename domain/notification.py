"""
Domain: lifecycle notification events.

Events are a tagged union keyed on `kind`; code branches on the concrete
event class, never on an untyped payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .money import format_money

ADMIN_CHANNEL = "admin-notifications"


def user_channel(user_id: UUID) -> str:
    return f"user-{user_id}"


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class InvoiceIssued(_Event):
    kind: Literal["invoice_issued"] = "invoice_issued"
    invoice_id: UUID
    invoice_number: str
    auction_id: UUID
    buyer_id: UUID
    buyer_email: str = ""
    total_amount: int
    items_count: int
    payment_link_url: Optional[str] = None
    auto_charged: bool = False


class InvoicePaid(_Event):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice_id: UUID
    invoice_number: str
    buyer_id: UUID
    total_amount: int
    gateway_ref: Optional[str] = None


class SettlementIssued(_Event):
    kind: Literal["settlement_issued"] = "settlement_issued"
    settlement_id: UUID
    reference: str
    seller_id: UUID
    net_payout: int
    item_count: int


class SettlementPaid(_Event):
    kind: Literal["settlement_paid"] = "settlement_paid"
    settlement_id: UUID
    reference: str
    seller_id: UUID
    net_payout: int


NotificationEvent = Annotated[
    Union[InvoiceIssued, InvoicePaid, SettlementIssued, SettlementPaid],
    Field(discriminator="kind"),
]


class Audience(str, Enum):
    OWNER = "owner"  # the buyer or seller the event is about
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Recipient:
    user_id: UUID
    audience: Audience = Audience.OWNER

    @property
    def channel(self) -> str:
        return ADMIN_CHANNEL if self.audience is Audience.ADMIN else user_channel(self.user_id)


@dataclass(frozen=True, slots=True)
class NotificationContent:
    type: str
    title: str
    message: str
    link: str
    push_event: str


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    notification_id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    link: str
    created_at: datetime
    invoice_id: Optional[UUID] = None
    settlement_id: Optional[UUID] = None
    is_read: bool = False


def render(event: NotificationEvent, audience: Audience, currency: str = "gbp") -> NotificationContent:
    """Text and routing for one event as seen by one audience."""

    if isinstance(event, InvoiceIssued):
        total = format_money(event.total_amount, currency)
        if audience is Audience.ADMIN:
            return NotificationContent(
                type="Invoice",
                title="Invoice Generated",
                message=f"Invoice {event.invoice_number} for {event.buyer_email or event.buyer_id} - Total {total}",
                link="/cms/pannel/payments",
                push_event="invoice-created",
            )
        if event.auto_charged:
            message = f"You won {event.items_count} item(s). {total} was charged to your saved card."
        else:
            message = f"You won {event.items_count} item(s). Total: {total}"
        return NotificationContent(
            type="Invoice",
            title=f"Invoice {event.invoice_number}",
            message=message,
            link=f"/invoice/{event.invoice_id}",
            push_event="invoice-created",
        )
    if isinstance(event, InvoicePaid):
        total = format_money(event.total_amount, currency)
        if audience is Audience.ADMIN:
            return NotificationContent(
                type="Payment",
                title="Invoice Paid",
                message=f"Invoice {event.invoice_number} paid - {total}",
                link="/cms/pannel/payments",
                push_event="invoice-paid",
            )
        return NotificationContent(
            type="Payment",
            title="Payment received",
            message=f"Thank you. We received {total} for invoice {event.invoice_number}.",
            link=f"/invoice/{event.invoice_id}",
            push_event="invoice-paid",
        )
    if isinstance(event, SettlementIssued):
        return NotificationContent(
            type="Settlement",
            title=f"Settlement statement {event.reference} is ready",
            message=(
                f"{event.item_count} item(s) settled. Net payout: "
                f"{format_money(event.net_payout, currency)}"
            ),
            link="/profile/seller-portal",
            push_event="settlement-issued",
        )
    if isinstance(event, SettlementPaid):
        return NotificationContent(
            type="Settlement",
            title=f"Payment confirmed: {event.reference}",
            message=f"{format_money(event.net_payout, currency)} has been paid to you.",
            link="/profile/seller-portal",
            push_event="settlement-paid",
        )
    raise TypeError(f"Unsupported event type: {type(event)!r}")


def push_payload(event: NotificationEvent, content: NotificationContent) -> dict[str, Any]:
    payload = event.model_dump(mode="json")
    payload["title"] = content.title
    payload["message"] = content.message
    payload["link"] = content.link
    return payload


def related_ids(event: NotificationEvent) -> tuple[Optional[UUID], Optional[UUID]]:
    """(invoice_id, settlement_id) for the durable record."""

    return getattr(event, "invoice_id", None), getattr(event, "settlement_id", None)
