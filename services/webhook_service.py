"""
Gateway webhook handling.

Verifies the signature of a Stripe event, correlates it to an invoice by the
`invoice_id` metadata written when the charge or pay link was created (or by
`invoice_number` when only that is present) and marks the invoice Paid.

Stripe delivers at least once, so every branch is idempotent: duplicates,
unknown invoices and unhandled event types are acknowledged, never retried.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.invoice import Invoice
from integrations.stripe_gateway import verify_webhook_signature
from services.invoice_service import InvoiceLifecycleManager

logger = logging.getLogger(__name__)

PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class GatewayObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    object: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None


class GatewayEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: GatewayObject


class GatewayEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: GatewayEventData


class WebhookOutcome(str, Enum):
    PAID = "paid"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"
    CONFLICT = "conflict"


class GatewayWebhookHandler:
    def __init__(self, invoices: InvoiceLifecycleManager, secret: str):
        self._invoices = invoices
        self._secret = secret

    def handle(self, payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """
        Verify and apply one webhook delivery.

        Raises:
            ValidationError: bad signature or a body that is not a gateway event.
        """

        if not self._secret:
            raise ValidationError("Webhook secret is not configured")
        raw = verify_webhook_signature(payload, signature_header, self._secret)
        try:
            event = GatewayEvent.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(f"Unrecognised webhook payload: {exc.error_count()} error(s)") from exc
        return self.apply(event)

    def apply(self, event: GatewayEvent) -> WebhookOutcome:
        obj = event.data.object
        if event.type == PAYMENT_INTENT_SUCCEEDED:
            gateway_ref = obj.id
        elif event.type == CHECKOUT_SESSION_COMPLETED:
            if obj.payment_status != "paid":
                logger.info("Checkout session %s completed unpaid (%s)", obj.id, obj.payment_status)
                return WebhookOutcome.IGNORED
            gateway_ref = obj.payment_intent or obj.id
        else:
            logger.debug("Ignoring webhook event %s of type %s", event.id, event.type)
            return WebhookOutcome.IGNORED

        invoice = self._find_invoice(obj.metadata)
        if invoice is None:
            logger.warning("Webhook %s (%s) matched no invoice", event.id, event.type)
            return WebhookOutcome.UNMATCHED

        try:
            result = self._invoices.mark_paid(invoice.invoice_id, gateway_ref)
        except ConflictError as exc:
            logger.warning("Webhook %s for invoice %s not applied: %s", event.id, invoice.invoice_number, exc)
            return WebhookOutcome.CONFLICT
        return WebhookOutcome.PAID if result.changed else WebhookOutcome.DUPLICATE

    def _find_invoice(self, metadata: Dict[str, Any]) -> Optional[Invoice]:
        invoice_id = metadata.get("invoice_id")
        if invoice_id:
            try:
                return self._invoices.get(UUID(str(invoice_id)))
            except ValueError:
                logger.warning("Webhook metadata carries a malformed invoice_id %r", invoice_id)
            except NotFoundError:
                logger.warning("Webhook metadata references unknown invoice %s", invoice_id)

        invoice_number = metadata.get("invoice_number")
        if invoice_number:
            try:
                return self._invoices.get_by_number(str(invoice_number))
            except NotFoundError:
                logger.warning("Webhook metadata references unknown invoice number %s", invoice_number)
        return None


__all__ = [
    "GatewayEvent",
    "GatewayWebhookHandler",
    "WebhookOutcome",
]
