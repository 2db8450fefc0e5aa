"""
Auctions API Endpoints.

Post-close billing for a whole auction: raise invoices for every winner and
send them in one batch.
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_batch_dispatcher, get_invoice_manager, http_error
from api.models import (
    ERROR_RESPONSES,
    AuctionCloseResponse,
    BatchDispatchResponse,
    FailedInvoiceResponse,
    SentInvoiceResponse,
)
from domain.errors import BillingError
from services.invoice_dispatch_service import BatchInvoiceDispatcher
from services.invoice_service import InvoiceLifecycleManager

router = APIRouter()


@router.post(
    "/auctions/{auction_id}/close",
    response_model=AuctionCloseResponse,
    responses=ERROR_RESPONSES,
    summary="Invoice Auction Winners",
    description="Create one invoice per winning buyer of a closed auction."
)
def invoice_auction_winners(
    auction_id: UUID,
    manager: InvoiceLifecycleManager = Depends(get_invoice_manager),
):
    """
    Invoice every winner of a closed auction.

    Items without bids, or whose high bid is below the reserve, are reported
    in `unsold_item_ids`. Buyers already invoiced for the auction are
    skipped, so the call can be repeated safely.
    """
    try:
        result = manager.invoice_auction_winners(auction_id)
    except BillingError as e:
        raise http_error(e)
    return AuctionCloseResponse(
        auction_id=auction_id,
        invoices_created=result.invoices_created,
        invoice_ids=[invoice.invoice_id for invoice in result.created],
        skipped_buyer_ids=result.skipped_buyer_ids,
        unsold_item_ids=result.unsold_item_ids,
    )


@router.post(
    "/auctions/{auction_id}/send-invoices",
    response_model=BatchDispatchResponse,
    responses=ERROR_RESPONSES,
    summary="Send Auction Invoices",
)
def send_auction_invoices(
    auction_id: UUID,
    dispatcher: BatchInvoiceDispatcher = Depends(get_batch_dispatcher),
):
    """
    Send every Unpaid, never-sent invoice of the auction.

    Each invoice is charged or given a pay link, the buyer is notified and
    the invoice is marked sent. One failing invoice does not stop the batch:
    inspect `failed` for per-invoice reasons. Already-sent invoices are
    not re-sent.
    """
    result = dispatcher.send_all_for_auction(auction_id)
    return BatchDispatchResponse(
        auction_id=auction_id,
        sent_count=result.sent_count,
        failed_count=result.failed_count,
        sent=[
            SentInvoiceResponse(
                invoice_id=sent.invoice_id,
                invoice_number=sent.invoice_number,
                outcome=sent.outcome.value,
                payment_link_url=sent.payment_link_url,
            )
            for sent in result.sent
        ],
        failed=[
            FailedInvoiceResponse(
                invoice_id=failed.invoice_id,
                invoice_number=failed.invoice_number,
                reason=failed.reason,
            )
            for failed in result.failed
        ],
        skipped=result.skipped,
    )
