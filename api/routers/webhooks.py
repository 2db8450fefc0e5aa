"""
Webhooks API Endpoints.

Receives payment confirmations from Stripe.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_webhook_handler, http_error
from api.models import ERROR_RESPONSES, WebhookResponse
from domain.errors import BillingError
from services.webhook_service import GatewayWebhookHandler

router = APIRouter()


@router.post(
    "/webhooks/stripe",
    response_model=WebhookResponse,
    responses=ERROR_RESPONSES,
    summary="Stripe Webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    handler: GatewayWebhookHandler = Depends(get_webhook_handler),
):
    """
    Apply a signed Stripe event.

    Handles `payment_intent.succeeded` and `checkout.session.completed`.
    Other event types, duplicates and unknown invoices are acknowledged with
    200 so Stripe stops retrying. A bad signature returns 400.
    """
    payload = await request.body()
    try:
        outcome = await run_in_threadpool(handler.handle, payload, stripe_signature)
    except BillingError as e:
        raise http_error(e)
    return WebhookResponse(outcome=outcome.value)
