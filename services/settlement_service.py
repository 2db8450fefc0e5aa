"""
Settlement calculator.

Reads a seller's items and bids for an auction, partitions them into sold
and unsold, applies the seller's commission policy and itemised adjustments,
and persists the result as a Draft statement. Draft -> Sent -> Paid
transitions are guarded updates and notify the seller.

Computation itself is read-only over auction data, so statements for
different sellers or auctions can be computed concurrently.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.notification import SettlementIssued, SettlementPaid
from domain.settlement import (
    Adjustment,
    CommissionPolicy,
    FlatCommission,
    SettlementStatement,
    SettlementStatus,
    compute_statement,
    ensure_settlement_transition,
    generate_settlement_reference,
    revise_statement,
)
from domain.time import utc_now
from repositories.auction_repository import AuctionRepository
from repositories.settlement_repository import (
    DuplicateSettlementReferenceError,
    SettlementRepository,
)
from services.notification_service import NotificationDispatcher, optional_notify

logger = logging.getLogger(__name__)


class SettlementCalculator:
    def __init__(
        self,
        auctions: AuctionRepository,
        settlements: SettlementRepository,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        default_commission_percent: Decimal = Decimal("10"),
        commission_policy_for: Optional[Callable[[UUID], CommissionPolicy]] = None,
        clock: Callable[[], datetime] = utc_now,
        reference_attempts: int = 3,
    ):
        self._auctions = auctions
        self._settlements = settlements
        self._notifier = notifier
        self._default_policy = FlatCommission(default_commission_percent)
        self._commission_policy_for = commission_policy_for
        self._clock = clock
        self._reference_attempts = reference_attempts

    def policy_for(self, seller_id: UUID) -> CommissionPolicy:
        if self._commission_policy_for is None:
            return self._default_policy
        return self._commission_policy_for(seller_id)

    def preview_settlement(
        self,
        seller_id: UUID,
        auction_id: UUID,
        adjustments: Sequence[Adjustment] = (),
        *,
        commission_policy: Optional[CommissionPolicy] = None,
        commission_vat_percent: Optional[Decimal] = None,
    ) -> SettlementStatement:
        """Compute a statement without persisting it."""

        return self._compute(
            seller_id,
            auction_id,
            adjustments,
            reference="PREVIEW",
            commission_policy=commission_policy,
            commission_vat_percent=commission_vat_percent,
        )

    def compute_settlement(
        self,
        seller_id: UUID,
        auction_id: UUID,
        adjustments: Sequence[Adjustment] = (),
        *,
        commission_policy: Optional[CommissionPolicy] = None,
        commission_vat_percent: Optional[Decimal] = None,
    ) -> SettlementStatement:
        """
        Compute and persist a Draft statement for one seller in one auction.

        Raises:
            ValidationError: no items, negative net payout, or a statement
                already exists for this seller and auction. Nothing is
                persisted in any of these cases.
        """

        existing = self._settlements.find(seller_id, auction_id)
        if existing is not None:
            raise ValidationError(
                f"Settlement {existing.reference} already exists for seller {seller_id} "
                f"in auction {auction_id}"
            )

        for attempt in range(1, self._reference_attempts + 1):
            statement = self._compute(
                seller_id,
                auction_id,
                adjustments,
                reference=generate_settlement_reference(self._clock()),
                commission_policy=commission_policy,
                commission_vat_percent=commission_vat_percent,
            )
            try:
                created = self._settlements.create(statement)
            except DuplicateSettlementReferenceError:
                logger.warning(
                    "Settlement reference %s collided (attempt %d/%d)",
                    statement.reference,
                    attempt,
                    self._reference_attempts,
                )
                continue
            logger.info(
                "Settlement %s for seller %s: sales %d, commission %d, net %d",
                created.reference,
                seller_id,
                created.total_sales,
                created.commission,
                created.net_payout,
            )
            return created

        raise RuntimeError(
            f"Could not allocate a unique settlement reference after {self._reference_attempts} attempts"
        )

    def revise_adjustments(self, settlement_id: UUID, adjustments: Sequence[Adjustment]) -> SettlementStatement:
        """
        Replace the itemised adjustments of a Draft statement.

        Raises:
            NotFoundError: unknown settlement.
            ConflictError: the statement has already been sent.
            ValidationError: the revised payout would be negative.
        """

        revised = revise_statement(self.get(settlement_id), adjustments)
        if not self._settlements.replace_draft(revised):
            current = self.get(settlement_id)
            raise ConflictError(
                f"Settlement {current.reference} is {current.status.value}; only Draft can be revised",
                current_status=current.status.value,
            )
        logger.info("Settlement %s revised: net %d", revised.reference, revised.net_payout)
        return revised

    def get(self, settlement_id: UUID) -> SettlementStatement:
        statement = self._settlements.get(settlement_id)
        if statement is None:
            raise NotFoundError(f"Settlement not found: {settlement_id}")
        return statement

    def list_for_seller(self, seller_id: UUID) -> List[SettlementStatement]:
        return self._settlements.list_for_seller(seller_id)

    def mark_sent(self, settlement_id: UUID) -> tuple[SettlementStatement, bool]:
        """Draft -> Sent. Returns (statement, changed); an already-Sent statement is a no-op."""

        updated, changed = self._transition(settlement_id, SettlementStatus.DRAFT, SettlementStatus.SENT)
        if changed:
            optional_notify(
                self._notifier,
                SettlementIssued(
                    settlement_id=updated.settlement_id,
                    reference=updated.reference,
                    seller_id=updated.seller_id,
                    net_payout=updated.net_payout,
                    item_count=len(updated.sold_items) + len(updated.unsold_items),
                ),
                updated.seller_id,
            )
        return updated, changed

    def mark_paid(self, settlement_id: UUID) -> tuple[SettlementStatement, bool]:
        """Sent -> Paid, recording paid_at. An already-Paid statement is a no-op."""

        updated, changed = self._transition(settlement_id, SettlementStatus.SENT, SettlementStatus.PAID)
        if changed:
            optional_notify(
                self._notifier,
                SettlementPaid(
                    settlement_id=updated.settlement_id,
                    reference=updated.reference,
                    seller_id=updated.seller_id,
                    net_payout=updated.net_payout,
                ),
                updated.seller_id,
            )
        return updated, changed

    def _transition(
        self, settlement_id: UUID, expected: SettlementStatus, target: SettlementStatus
    ) -> tuple[SettlementStatement, bool]:
        updated = self._settlements.transition_status(
            settlement_id, expected=expected, target=target, at=self._clock()
        )
        if updated is not None:
            logger.info("Settlement %s -> %s", updated.reference, target.value)
            return updated, True

        current = self.get(settlement_id)
        if current.status is target:
            return current, False
        ensure_settlement_transition(current.status, target)
        raise ConflictError(
            f"Settlement {current.reference} changed concurrently", current_status=current.status.value
        )

    def _compute(
        self,
        seller_id: UUID,
        auction_id: UUID,
        adjustments: Sequence[Adjustment],
        *,
        reference: str,
        commission_policy: Optional[CommissionPolicy],
        commission_vat_percent: Optional[Decimal],
    ) -> SettlementStatement:
        items = self._auctions.list_items(auction_id, seller_id=seller_id)
        bids = self._auctions.list_bids([item.item_id for item in items])
        return compute_statement(
            settlement_id=uuid4(),
            reference=reference,
            seller_id=seller_id,
            auction_id=auction_id,
            items=items,
            bids=bids,
            commission_policy=commission_policy or self.policy_for(seller_id),
            adjustments=adjustments,
            commission_vat_percent=commission_vat_percent,
            generated_at=self._clock(),
        )


__all__ = ["SettlementCalculator"]
