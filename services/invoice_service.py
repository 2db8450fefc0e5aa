"""
Invoice lifecycle manager.

Handles:
- Creating invoices from winning bids (single lot or all of a buyer's wins)
- Invoicing every winner when an auction closes
- Guarded status transitions: MarkPaid, Cancel
- Recording sent_at exactly once (MarkSent)

Transitions are compare-and-swap updates in the store, so concurrent callers
cannot both move an invoice out of Unpaid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.bidding import AuctionItem, ItemDisposition, WinningBid, classify_item, high_bid
from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.invoice import (
    Invoice,
    InvoiceStatus,
    SellerTerms,
    build_invoice,
    ensure_transition,
    generate_invoice_number,
)
from domain.notification import InvoicePaid
from domain.payment import PaymentLink
from domain.time import utc_now
from repositories.auction_repository import AuctionRepository
from repositories.invoice_repository import DuplicateInvoiceNumberError, InvoiceRepository
from services.notification_service import NotificationDispatcher, optional_notify

logger = logging.getLogger(__name__)

Lot = tuple[WinningBid, AuctionItem, SellerTerms]


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of an idempotent transition: `changed` is False for a no-op."""

    invoice: Invoice
    changed: bool


@dataclass(frozen=True, slots=True)
class AuctionInvoicingResult:
    created: List[Invoice] = field(default_factory=list)
    skipped_buyer_ids: List[UUID] = field(default_factory=list)
    unsold_item_ids: List[UUID] = field(default_factory=list)

    @property
    def invoices_created(self) -> int:
        return len(self.created)


class InvoiceLifecycleManager:
    def __init__(
        self,
        invoices: InvoiceRepository,
        auctions: AuctionRepository,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
        number_attempts: int = 3,
    ):
        self._invoices = invoices
        self._auctions = auctions
        self._notifier = notifier
        self._clock = clock
        self._number_attempts = number_attempts

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        winning_bid: Optional[WinningBid],
        item: AuctionItem,
        seller_terms: Optional[SellerTerms] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Create an Unpaid invoice for a single won lot.

        Raises:
            ValidationError: no qualifying bid for (item, buyer), or the item
                is already invoiced.
        """

        if winning_bid is None:
            raise ValidationError(f"No winning bid found for item {item.item_id}")
        terms = seller_terms or SellerTerms.for_item(item)
        return self.create_invoice_for_lots(
            buyer_id=winning_bid.buyer_id,
            auction_id=item.auction_id,
            lots=[(winning_bid, item, terms)],
            notes=notes,
        )

    def create_invoice_for_item(
        self,
        item_id: UUID,
        buyer_id: UUID,
        bid_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Look up the item and its winning bid, then create the invoice.

        The winning bid is `bid_id` when given, otherwise the item's high bid.
        Either way it must belong to `buyer_id`.
        """

        item = self._auctions.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Auction item not found: {item_id}")

        if bid_id is not None:
            bid = self._auctions.get_bid(bid_id)
            if bid is None or bid.auction_item_id != item_id:
                raise ValidationError(f"Bid {bid_id} is not a bid on item {item_id}")
        else:
            bid = high_bid(self._auctions.list_bids([item_id]))

        if bid is None or bid.buyer_id != buyer_id:
            raise ValidationError(f"No qualifying bid for item {item_id} and buyer {buyer_id}")
        return self.create_invoice(WinningBid.from_bid(bid), item, notes=notes)

    def create_invoice_for_lots(
        self,
        *,
        buyer_id: UUID,
        auction_id: UUID,
        lots: Sequence[Lot],
        notes: Optional[str] = None,
    ) -> Invoice:
        """Price and persist one invoice covering several lots won by one buyer."""

        invoice_id = uuid4()
        for attempt in range(1, self._number_attempts + 1):
            now = self._clock()
            invoice = build_invoice(
                invoice_id=invoice_id,
                invoice_number=generate_invoice_number(now),
                buyer_id=buyer_id,
                auction_id=auction_id,
                lots=lots,
                created_at=now,
                notes=notes,
            )
            try:
                created = self._invoices.create(invoice)
            except DuplicateInvoiceNumberError:
                logger.warning(
                    "Invoice number %s already taken (attempt %d/%d)",
                    invoice.invoice_number,
                    attempt,
                    self._number_attempts,
                )
                continue
            logger.info(
                "Created invoice %s for buyer %s: %d lot(s), total %d",
                created.invoice_number,
                buyer_id,
                len(created.line_items),
                created.total_amount,
            )
            return created
        raise RuntimeError("Could not allocate a unique invoice number")

    def invoice_auction_winners(self, auction_id: UUID) -> AuctionInvoicingResult:
        """
        Create one invoice per winning buyer for a closed auction.

        Items with no bids or a high bid below reserve are not invoiced.
        Buyers who already have an invoice for the auction are skipped.
        """

        items = self._auctions.list_items(auction_id)
        bids = self._auctions.list_bids([item.item_id for item in items])

        wins: Dict[UUID, List[Lot]] = {}
        unsold: List[UUID] = []
        for item in items:
            disposition, top = classify_item(item, bids)
            if disposition is not ItemDisposition.SOLD or top is None:
                unsold.append(item.item_id)
                continue
            wins.setdefault(top.buyer_id, []).append(
                (WinningBid.from_bid(top), item, SellerTerms.for_item(item))
            )

        already_invoiced = self._invoices.buyer_ids_with_invoices(auction_id)
        result = AuctionInvoicingResult(unsold_item_ids=unsold)
        for buyer_id, lots in wins.items():
            if buyer_id in already_invoiced:
                result.skipped_buyer_ids.append(buyer_id)
                continue
            result.created.append(
                self.create_invoice_for_lots(buyer_id=buyer_id, auction_id=auction_id, lots=lots)
            )

        logger.info(
            "Auction %s invoicing: %d created, %d skipped, %d unsold item(s)",
            auction_id,
            len(result.created),
            len(result.skipped_buyer_ids),
            len(unsold),
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, invoice_id: UUID) -> Invoice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    def get_by_number(self, invoice_number: str) -> Invoice:
        invoice = self._invoices.get_by_number(invoice_number)
        if invoice is None:
            raise NotFoundError(f"Invoice not found: {invoice_number}")
        return invoice

    def list_for_auction(self, auction_id: UUID) -> List[Invoice]:
        return self._invoices.list_for_auction(auction_id)

    def list_unsent(self, auction_id: UUID) -> List[Invoice]:
        """Unpaid, never-sent invoices of an auction, oldest first."""

        return self._invoices.list_unsent_unpaid(auction_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_paid(
        self,
        invoice_id: UUID,
        gateway_ref: Optional[str],
        *,
        automatic: bool = False,
        notify: bool = True,
    ) -> TransitionResult:
        """
        Unpaid -> Paid. Idempotent: an already-Paid invoice is returned
        unchanged (paid_at keeps its first value).

        Raises:
            NotFoundError: unknown invoice.
            ConflictError: the invoice is Cancelled.
        """

        updated = self._invoices.transition_status(
            invoice_id,
            expected=InvoiceStatus.UNPAID,
            target=InvoiceStatus.PAID,
            at=self._clock(),
            automatic_charge_ref=gateway_ref if automatic else None,
        )
        if updated is None:
            current = self.get(invoice_id)
            if current.status is InvoiceStatus.PAID:
                logger.info("Invoice %s already paid; ignoring duplicate confirmation", invoice_id)
                return TransitionResult(current, changed=False)
            logger.warning(
                "Payment confirmation %s for invoice %s in status %s",
                gateway_ref,
                invoice_id,
                current.status.value,
            )
            ensure_transition(current.status, InvoiceStatus.PAID)
            raise ConflictError(
                f"Invoice {invoice_id} changed concurrently", current_status=current.status.value
            )

        logger.info("Invoice %s marked paid (ref=%s)", updated.invoice_number, gateway_ref)
        if notify:
            optional_notify(
                self._notifier,
                InvoicePaid(
                    invoice_id=updated.invoice_id,
                    invoice_number=updated.invoice_number,
                    buyer_id=updated.buyer_id,
                    total_amount=updated.total_amount,
                    gateway_ref=gateway_ref,
                ),
                updated.buyer_id,
            )
        return TransitionResult(updated, changed=True)

    def cancel(self, invoice_id: UUID, reason: Optional[str] = None) -> TransitionResult:
        """
        Unpaid -> Cancelled (admin action).

        Raises:
            NotFoundError: unknown invoice.
            ConflictError: the invoice is Paid.
        """

        updated = self._invoices.transition_status(
            invoice_id,
            expected=InvoiceStatus.UNPAID,
            target=InvoiceStatus.CANCELLED,
            at=self._clock(),
        )
        if updated is None:
            current = self.get(invoice_id)
            if current.status is InvoiceStatus.CANCELLED:
                return TransitionResult(current, changed=False)
            ensure_transition(current.status, InvoiceStatus.CANCELLED)
            raise ConflictError(
                f"Invoice {invoice_id} changed concurrently", current_status=current.status.value
            )
        logger.info("Invoice %s cancelled: %s", updated.invoice_number, reason or "no reason given")
        return TransitionResult(updated, changed=True)

    def mark_sent(self, invoice_id: UUID, link_or_confirmation: Optional[str] = None) -> bool:
        """
        Record sent_at once. Returns False (no-op) when it was already set.

        Raises:
            NotFoundError: unknown invoice.
        """

        if self._invoices.mark_sent(invoice_id, self._clock()):
            logger.info("Invoice %s sent (%s)", invoice_id, link_or_confirmation or "no link")
            return True
        self.get(invoice_id)
        logger.info("Invoice %s was already sent; not re-sending", invoice_id)
        return False

    def record_payment_link(self, invoice_id: UUID, link: PaymentLink) -> bool:
        """Attach a pay link. Returns False when the invoice is no longer Unpaid."""

        return self._invoices.record_payment_link(invoice_id, link.link_ref, link.url)

    def require_open(self, invoice_id: UUID) -> Invoice:
        """Fresh read that raises ConflictError unless the invoice is Unpaid."""

        invoice = self.get(invoice_id)
        if not invoice.is_open:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}",
                current_status=invoice.status.value,
            )
        return invoice


__all__ = [
    "AuctionInvoicingResult",
    "InvoiceLifecycleManager",
    "TransitionResult",
]
