"""
Invoices API Endpoints.

Create invoices, read them, collect payment, send them and apply admin
transitions.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_batch_dispatcher, get_invoice_manager, http_error
from api.models import (
    ERROR_RESPONSES,
    CancelRequest,
    CreateInvoiceRequest,
    InvoiceResponse,
    MarkPaidRequest,
    ReconcileResponse,
    TransitionResponse,
)
from domain.errors import BillingError, ConflictError
from services.invoice_dispatch_service import BatchInvoiceDispatcher, SendStatus
from services.invoice_service import InvoiceLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/invoices",
    response_model=InvoiceResponse,
    responses=ERROR_RESPONSES,
    status_code=201,
    summary="Create Invoice",
    description="Invoice a won lot for its winning buyer."
)
def create_invoice(
    request: CreateInvoiceRequest,
    manager: InvoiceLifecycleManager = Depends(get_invoice_manager),
):
    """
    Create an Unpaid invoice for a won auction item.

    **Pricing (per lot, in minor units, rounded half-up):**
    - premium = hammer x buyer's premium %
    - tax = (hammer + premium) x tax %
    - total = hammer + premium + tax

    Returns 400 when the buyer holds no qualifying bid, the high bid is below
    the reserve, or the item has already been invoiced.
    """
    try:
        invoice = manager.create_invoice_for_item(
            request.auction_item_id,
            request.buyer_id,
            bid_id=request.bid_id,
            notes=request.notes,
        )
    except BillingError as e:
        raise http_error(e)
    return InvoiceResponse.from_invoice(invoice)


@router.get(
    "/invoices/{invoice_id}",
    response_model=InvoiceResponse,
    responses=ERROR_RESPONSES,
    summary="Get Invoice",
)
def get_invoice(
    invoice_id: UUID,
    manager: InvoiceLifecycleManager = Depends(get_invoice_manager),
):
    try:
        return InvoiceResponse.from_invoice(manager.get(invoice_id))
    except BillingError as e:
        raise http_error(e)


@router.post(
    "/invoices/{invoice_id}/reconcile",
    response_model=ReconcileResponse,
    responses=ERROR_RESPONSES,
    summary="Collect Payment",
    description="Charge the buyer's stored card, falling back to a pay link."
)
def reconcile_invoice(
    invoice_id: UUID,
    dispatcher: BatchInvoiceDispatcher = Depends(get_batch_dispatcher),
):
    """
    Collect payment for one invoice and notify the buyer of the outcome.

    **Outcomes:**
    - `Charged`: the stored card was charged and the invoice is Paid
    - `LinkIssued`: no usable card, or the charge failed; a pay link was created
    - `AlreadySettled`: the invoice was not Unpaid; nothing was done

    A reconcile already in flight for the same invoice answers
    `{"changed": false}`. Returns 502 when the pay link could not be created.
    """
    try:
        result = dispatcher.collect_payment(invoice_id)
    except ConflictError as e:
        logger.info("Reconcile of %s skipped: %s", invoice_id, e)
        return ReconcileResponse(changed=False, invoice_id=invoice_id)
    except BillingError as e:
        raise http_error(e)
    return ReconcileResponse(
        invoice_id=result.invoice_id,
        outcome=result.outcome.value,
        payment_link_url=result.payment_link_url,
    )


@router.post(
    "/invoices/{invoice_id}/send",
    response_model=ReconcileResponse,
    responses=ERROR_RESPONSES,
    summary="Send Invoice",
)
def send_invoice(
    invoice_id: UUID,
    dispatcher: BatchInvoiceDispatcher = Depends(get_batch_dispatcher),
):
    """
    Send one invoice: collect payment, notify the buyer, record sent_at.

    An invoice that was already sent, or is no longer Unpaid, answers
    `{"changed": false}` and no second pay link is created.
    """
    try:
        status, sent = dispatcher.send_invoice(invoice_id)
    except BillingError as e:
        raise http_error(e)
    if status is SendStatus.SKIPPED:
        return ReconcileResponse(changed=False, invoice_id=invoice_id)
    return ReconcileResponse(
        invoice_id=sent.invoice_id,
        outcome=sent.outcome.value,
        payment_link_url=sent.payment_link_url,
    )


@router.post(
    "/invoices/{invoice_id}/mark-paid",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Confirm Offline Payment",
)
def mark_invoice_paid(
    invoice_id: UUID,
    request: MarkPaidRequest,
    manager: InvoiceLifecycleManager = Depends(get_invoice_manager),
):
    """
    Mark an invoice Paid after a payment made outside the gateway.

    Repeating the call is a no-op (`changed: false`); paid_at keeps its
    first value. A Cancelled invoice is left untouched.
    """
    try:
        result = manager.mark_paid(invoice_id, request.reference)
    except ConflictError as e:
        return TransitionResponse(changed=False, status=e.current_status)
    except BillingError as e:
        raise http_error(e)
    return TransitionResponse(
        changed=result.changed,
        status=result.invoice.status.value,
        invoice=InvoiceResponse.from_invoice(result.invoice),
    )


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Cancel Invoice",
)
def cancel_invoice(
    invoice_id: UUID,
    request: CancelRequest,
    manager: InvoiceLifecycleManager = Depends(get_invoice_manager),
):
    try:
        result = manager.cancel(invoice_id, request.reason)
    except ConflictError as e:
        return TransitionResponse(changed=False, status=e.current_status)
    except BillingError as e:
        raise http_error(e)
    return TransitionResponse(
        changed=result.changed,
        status=result.invoice.status.value,
        invoice=InvoiceResponse.from_invoice(result.invoice),
    )
