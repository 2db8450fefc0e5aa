"""
Payment reconciler.

Reconcile(invoice, buyer):
1. Invoice not Unpaid -> ALREADY_SETTLED, gateway untouched.
2. Claim the invoice (one Pending payment attempt per invoice).
3. If the buyer has a usable stored card, charge it off-session.
   Success -> MarkPaid -> CHARGED.
4. Otherwise (no card, decline, gateway error) create a pay link for the
   same amount, tagged with the invoice id -> LINK_ISSUED.

A failed charge is an expected branch: it is logged and falls through to the
pay link. Only a failed pay link raises (GatewayError). Each gateway call is
made once; retrying is the caller's decision.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from domain.buyer import Buyer, PaymentMethod, select_default_payment_method
from domain.errors import ConflictError, GatewayError
from domain.invoice import Invoice
from domain.payment import (
    PaymentAttempt,
    PaymentMethodKind,
    PaymentOutcome,
    ReconcileOutcome,
    ReconcileResult,
)
from domain.time import utc_now
from integrations.stripe_gateway import StripeGateway
from repositories.buyer_repository import BuyerRepository
from repositories.payment_attempt_repository import PaymentAttemptRepository
from services.invoice_service import InvoiceLifecycleManager

logger = logging.getLogger(__name__)


class _Claim:
    """The Pending attempt for one reconcile call, closed exactly once."""

    def __init__(self, attempts: PaymentAttemptRepository, attempt: PaymentAttempt, clock: Callable[[], datetime]):
        self._attempts = attempts
        self._clock = clock
        self.attempt = attempt

    @property
    def open(self) -> bool:
        return self.attempt.outcome is PaymentOutcome.PENDING

    @property
    def idempotency_key(self) -> str:
        return self.attempt.idempotency_key

    def close(
        self,
        method: PaymentMethodKind,
        outcome: PaymentOutcome,
        *,
        gateway_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.attempt = self._attempts.complete(
            self.attempt,
            method=method,
            outcome=outcome,
            completed_at=self._clock(),
            gateway_ref=gateway_ref,
            failure_reason=reason,
        )


class PaymentReconciler:
    def __init__(
        self,
        invoices: InvoiceLifecycleManager,
        buyers: BuyerRepository,
        attempts: PaymentAttemptRepository,
        gateway: StripeGateway,
        *,
        currency: str = "gbp",
        app_base_url: str = "http://localhost:3000",
        claim_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._invoices = invoices
        self._buyers = buyers
        self._attempts = attempts
        self._gateway = gateway
        self._currency = currency
        self._app_base_url = app_base_url.rstrip("/")
        self._claim_ttl = claim_ttl
        self._clock = clock

    def reconcile(self, invoice: Invoice, buyer: Buyer) -> ReconcileResult:
        """
        Collect payment for an invoice, by stored card or by pay link.

        Raises:
            ConflictError: another reconcile is in flight for this invoice.
            GatewayError: the charge failed (or was skipped) AND the pay link
                could not be created.
        """

        if not invoice.is_open:
            logger.info(
                "Invoice %s is %s; nothing to reconcile",
                invoice.invoice_number,
                invoice.status.value,
            )
            return ReconcileResult(invoice.invoice_id, ReconcileOutcome.ALREADY_SETTLED)

        now = self._clock()
        method = select_default_payment_method(buyer.payment_methods, now.date())
        attempt = self._attempts.claim(
            invoice.invoice_id,
            PaymentMethodKind.AUTO_CHARGE if method else PaymentMethodKind.PAY_LINK,
            started_at=now,
            stale_before=now - self._claim_ttl,
        )
        claim = _Claim(self._attempts, attempt, self._clock)

        try:
            # re-read under the claim: a webhook may have paid it meanwhile
            try:
                invoice = self._invoices.require_open(invoice.invoice_id)
            except ConflictError:
                claim.close(attempt.method, PaymentOutcome.ABANDONED, reason="invoice no longer unpaid")
                return ReconcileResult(invoice.invoice_id, ReconcileOutcome.ALREADY_SETTLED)

            customer_ref = self._ensure_customer(buyer)

            failure_reason: Optional[str]
            if method is None:
                failure_reason = "no usable stored payment method"
            elif customer_ref is None:
                failure_reason = "gateway customer unavailable"
            else:
                charged, failure_reason = self._try_charge(invoice, customer_ref, method, claim)
                if charged is not None:
                    return charged

            logger.info(
                "Falling back to pay link for invoice %s (%s)",
                invoice.invoice_number,
                failure_reason,
            )
            return self._issue_link(invoice, buyer, customer_ref, claim, failure_reason)
        except Exception as exc:
            if claim.open:
                claim.close(claim.attempt.method, PaymentOutcome.FAILED, reason=str(exc))
            raise

    def _ensure_customer(self, buyer: Buyer) -> Optional[str]:
        """Gateway customer id for the buyer, created and cached on first use."""

        if buyer.gateway_customer_ref:
            return buyer.gateway_customer_ref
        try:
            created = self._gateway.create_customer(buyer)
        except GatewayError as exc:
            logger.warning("Could not create gateway customer for buyer %s: %s", buyer.buyer_id, exc)
            return None
        try:
            return self._buyers.cache_gateway_customer_ref(buyer.buyer_id, created)
        except RuntimeError as exc:
            logger.error("Could not cache gateway customer %s for buyer %s: %s", created, buyer.buyer_id, exc)
            return created

    def _try_charge(
        self,
        invoice: Invoice,
        customer_ref: str,
        method: PaymentMethod,
        claim: _Claim,
    ) -> tuple[Optional[ReconcileResult], Optional[str]]:
        """Returns (result, None) on success, (None, reason) on any failure."""

        try:
            charge = self._gateway.charge_off_session(
                customer_ref,
                method.method_ref,
                invoice.total_amount,
                self._currency,
                metadata=self._metadata(invoice),
                idempotency_key=claim.idempotency_key,
            )
        except GatewayError as exc:
            logger.warning("Off-session charge for invoice %s failed: %s", invoice.invoice_number, exc)
            return None, f"gateway error: {exc.code or 'unavailable'}"

        if not charge.succeeded:
            logger.warning(
                "Off-session charge for invoice %s declined (%s, status=%s)",
                invoice.invoice_number,
                charge.decline_code,
                charge.status,
            )
            return None, f"declined: {charge.decline_code or charge.status}"

        claim.close(PaymentMethodKind.AUTO_CHARGE, PaymentOutcome.SUCCESS, gateway_ref=charge.charge_ref)
        self._invoices.mark_paid(invoice.invoice_id, charge.charge_ref, automatic=True, notify=False)
        logger.info("Invoice %s charged off-session (%s)", invoice.invoice_number, charge.charge_ref)
        return ReconcileResult(invoice.invoice_id, ReconcileOutcome.CHARGED, gateway_ref=charge.charge_ref), None

    def _issue_link(
        self,
        invoice: Invoice,
        buyer: Buyer,
        customer_ref: Optional[str],
        claim: _Claim,
        failure_reason: Optional[str],
    ) -> ReconcileResult:
        metadata = self._metadata(invoice)
        metadata["user_id"] = str(buyer.buyer_id)
        if customer_ref:
            metadata["customer_id"] = customer_ref
        try:
            link = self._gateway.create_payment_link(
                invoice.total_amount,
                self._currency,
                description=f"Invoice {invoice.invoice_number}",
                metadata=metadata,
                redirect_url=f"{self._app_base_url}/invoice/{invoice.invoice_id}?payment=success",
                idempotency_key=f"{claim.idempotency_key}-link",
            )
        except GatewayError as exc:
            logger.error("Pay link creation failed for invoice %s: %s", invoice.invoice_number, exc)
            claim.close(
                PaymentMethodKind.PAY_LINK,
                PaymentOutcome.FAILED,
                reason=f"{failure_reason}; link failed: {exc}",
            )
            raise

        self._invoices.record_payment_link(invoice.invoice_id, link)
        claim.close(
            PaymentMethodKind.PAY_LINK,
            PaymentOutcome.LINK_ISSUED,
            gateway_ref=link.link_ref,
            reason=failure_reason,
        )
        return ReconcileResult(
            invoice.invoice_id,
            ReconcileOutcome.LINK_ISSUED,
            gateway_ref=link.link_ref,
            payment_link_url=link.url,
            charge_failure_reason=failure_reason,
        )

    def _metadata(self, invoice: Invoice) -> dict[str, str]:
        return {
            "invoice_id": str(invoice.invoice_id),
            "invoice_number": invoice.invoice_number,
            "auction_id": str(invoice.auction_id),
        }
