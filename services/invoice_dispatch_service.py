"""
Batch invoice dispatcher.

Sends every Unpaid, never-sent invoice of an auction: reconcile payment,
notify the buyer (and admins), then record sent_at. Invoices are processed
sequentially and independently; one failing invoice is recorded in the
result and the batch moves on.

`collect_payment` runs the same reconcile-and-notify step for one invoice
without marking it sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from uuid import UUID

from domain.buyer import Buyer
from domain.errors import ConflictError, NotFoundError
from domain.invoice import Invoice
from domain.notification import InvoiceIssued
from domain.payment import ReconcileOutcome, ReconcileResult
from repositories.buyer_repository import BuyerRepository
from services.invoice_service import InvoiceLifecycleManager
from services.notification_service import NotificationDispatcher
from services.payment_reconciler import PaymentReconciler

logger = logging.getLogger(__name__)


class SendStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class SentInvoice:
    invoice_id: UUID
    invoice_number: str
    outcome: ReconcileOutcome
    payment_link_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FailedInvoice:
    invoice_id: UUID
    invoice_number: str
    reason: str


@dataclass(slots=True)
class BatchDispatchResult:
    auction_id: UUID
    sent: List[SentInvoice] = field(default_factory=list)
    failed: List[FailedInvoice] = field(default_factory=list)
    skipped: List[UUID] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return len(self.sent)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class BatchInvoiceDispatcher:
    def __init__(
        self,
        invoices: InvoiceLifecycleManager,
        reconciler: PaymentReconciler,
        buyers: BuyerRepository,
        notifier: NotificationDispatcher,
    ):
        self._invoices = invoices
        self._reconciler = reconciler
        self._buyers = buyers
        self._notifier = notifier

    def send_all_for_auction(self, auction_id: UUID) -> BatchDispatchResult:
        """
        Send every Unpaid invoice of the auction whose sent_at is unset.

        Never raises for a single invoice: failures are collected in
        `failed` with a reason an admin can act on. Conflicts (another
        worker got there first) are counted as `skipped`.
        """

        result = BatchDispatchResult(auction_id=auction_id)
        pending = self._invoices.list_unsent(auction_id)
        logger.info("Dispatching %d invoice(s) for auction %s", len(pending), auction_id)

        for invoice in pending:
            try:
                sent = self._send(invoice)
            except ConflictError as exc:
                logger.info("Skipping invoice %s: %s", invoice.invoice_number, exc)
                result.skipped.append(invoice.invoice_id)
            except Exception as exc:
                logger.exception("Failed to send invoice %s", invoice.invoice_number)
                result.failed.append(
                    FailedInvoice(invoice.invoice_id, invoice.invoice_number, reason=str(exc) or type(exc).__name__)
                )
            else:
                if sent is None:
                    result.skipped.append(invoice.invoice_id)
                else:
                    result.sent.append(sent)

        logger.info(
            "Auction %s dispatch finished: %d sent, %d failed, %d skipped",
            auction_id,
            result.sent_count,
            result.failed_count,
            len(result.skipped),
        )
        return result

    def send_invoice(self, invoice_id: UUID) -> tuple[SendStatus, Optional[SentInvoice]]:
        """
        Send a single invoice. An invoice already sent is a no-op success:
        no reconcile runs, so no second pay link is created.
        """

        invoice = self._invoices.get(invoice_id)
        try:
            sent = self._send(invoice)
        except ConflictError as exc:
            logger.info("Invoice %s not sent: %s", invoice.invoice_number, exc)
            return SendStatus.SKIPPED, None
        if sent is None:
            return SendStatus.SKIPPED, None
        return SendStatus.SENT, sent

    def collect_payment(self, invoice_id: UUID) -> ReconcileResult:
        """
        Reconcile one invoice outside a send and tell the buyer the outcome
        (charged, or the new pay link). sent_at is left alone.

        Raises:
            NotFoundError: unknown invoice or buyer.
            ConflictError: another reconcile is in flight.
            GatewayError: the pay link could not be created.
        """

        return self._reconcile_and_notify(self._invoices.get(invoice_id))

    def _send(self, invoice: Invoice) -> Optional[SentInvoice]:
        if invoice.is_sent:
            logger.info("Invoice %s already sent at %s", invoice.invoice_number, invoice.sent_at)
            return None

        reconciled = self._reconcile_and_notify(invoice)
        if reconciled.outcome is ReconcileOutcome.ALREADY_SETTLED:
            logger.info("Invoice %s was settled before it was sent; skipping", invoice.invoice_number)
            return None

        self._invoices.mark_sent(
            invoice.invoice_id,
            reconciled.payment_link_url or reconciled.gateway_ref,
        )
        return SentInvoice(
            invoice_id=invoice.invoice_id,
            invoice_number=invoice.invoice_number,
            outcome=reconciled.outcome,
            payment_link_url=reconciled.payment_link_url,
        )

    def _reconcile_and_notify(self, invoice: Invoice) -> ReconcileResult:
        buyer = self._buyers.get(invoice.buyer_id)
        if buyer is None:
            raise NotFoundError(f"Buyer {invoice.buyer_id} not found")

        reconciled = self._reconciler.reconcile(invoice, buyer)
        if reconciled.outcome is not ReconcileOutcome.ALREADY_SETTLED:
            self._notify_issued(invoice, buyer, reconciled)
        return reconciled

    def _notify_issued(self, invoice: Invoice, buyer: Buyer, reconciled: ReconcileResult) -> None:
        event = InvoiceIssued(
            invoice_id=invoice.invoice_id,
            invoice_number=invoice.invoice_number,
            auction_id=invoice.auction_id,
            buyer_id=invoice.buyer_id,
            buyer_email=buyer.email,
            total_amount=invoice.total_amount,
            items_count=len(invoice.line_items),
            payment_link_url=reconciled.payment_link_url,
            auto_charged=reconciled.outcome is ReconcileOutcome.CHARGED,
        )
        self._notifier.defer(event, self._notifier.recipients(invoice.buyer_id))
        self._notifier.flush()


__all__ = [
    "BatchDispatchResult",
    "BatchInvoiceDispatcher",
    "FailedInvoice",
    "SendStatus",
    "SentInvoice",
]
