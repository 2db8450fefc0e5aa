"""
Payment attempt repository (persistence).

A Pending row acts as the per-invoice reconcile claim: the partial unique
index `payment_attempts_one_pending_idx` admits only one Pending attempt per
invoice, so a second concurrent reconcile fails to insert its claim.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional
from uuid import UUID, uuid4

from postgrest.exceptions import APIError

from domain.errors import ConflictError
from domain.payment import PaymentAttempt, PaymentMethodKind, PaymentOutcome
from domain.time import parse_optional_utc, parse_utc_datetime, to_iso_utc
from repositories.client import Client, check_response, is_unique_violation

_ATTEMPTS_TABLE: str = "payment_attempts"


def _row_to_attempt(row: Mapping[str, Any]) -> PaymentAttempt:
    return PaymentAttempt(
        attempt_id=UUID(str(row["id"])),
        invoice_id=UUID(str(row["invoice_id"])),
        method=PaymentMethodKind(str(row["method"])),
        outcome=PaymentOutcome(str(row["outcome"])),
        started_at=parse_utc_datetime(row["started_at_utc"]),
        gateway_ref=row.get("gateway_ref"),
        failure_reason=row.get("failure_reason"),
        completed_at=parse_optional_utc(row.get("completed_at_utc")),
    )


class PaymentAttemptRepository:
    def __init__(self, client: Client):
        self._client = client

    def claim(
        self,
        invoice_id: UUID,
        method: PaymentMethodKind,
        started_at: datetime,
        stale_before: datetime,
    ) -> PaymentAttempt:
        """
        Open a Pending attempt for the invoice.

        Pending attempts started before `stale_before` are abandoned first so a
        crashed worker cannot block the invoice forever.

        Raises:
            ConflictError: another reconcile holds a live claim.
        """

        abandon = (
            self._client.table(_ATTEMPTS_TABLE)
            .update(
                {
                    "outcome": PaymentOutcome.ABANDONED.value,
                    "completed_at_utc": to_iso_utc(started_at, name="completed_at"),
                }
            )
            .eq("invoice_id", str(invoice_id))
            .eq("outcome", PaymentOutcome.PENDING.value)
            .lt("started_at_utc", to_iso_utc(stale_before, name="stale_before"))
            .execute()
        )
        check_response(abandon, "abandon stale payment attempts")

        attempt = PaymentAttempt(
            attempt_id=uuid4(),
            invoice_id=invoice_id,
            method=method,
            outcome=PaymentOutcome.PENDING,
            started_at=started_at,
        )
        payload = {
            "id": str(attempt.attempt_id),
            "invoice_id": str(invoice_id),
            "method": method.value,
            "outcome": PaymentOutcome.PENDING.value,
            "started_at_utc": to_iso_utc(started_at, name="started_at"),
        }
        try:
            response = self._client.table(_ATTEMPTS_TABLE).insert(payload).execute()
        except APIError as exc:
            if is_unique_violation(exc):
                raise ConflictError(f"Invoice {invoice_id} is already being reconciled") from exc
            raise RuntimeError(f"Failed to claim payment attempt: {exc}") from exc
        check_response(response, "claim payment attempt")
        return attempt

    def complete(
        self,
        attempt: PaymentAttempt,
        *,
        method: PaymentMethodKind,
        outcome: PaymentOutcome,
        completed_at: datetime,
        gateway_ref: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> PaymentAttempt:
        payload = {
            "method": method.value,
            "outcome": outcome.value,
            "gateway_ref": gateway_ref,
            "failure_reason": failure_reason,
            "completed_at_utc": to_iso_utc(completed_at, name="completed_at"),
        }
        response = (
            self._client.table(_ATTEMPTS_TABLE)
            .update(payload)
            .eq("id", str(attempt.attempt_id))
            .execute()
        )
        check_response(response, "complete payment attempt")
        return PaymentAttempt(
            attempt_id=attempt.attempt_id,
            invoice_id=attempt.invoice_id,
            method=method,
            outcome=outcome,
            started_at=attempt.started_at,
            gateway_ref=gateway_ref,
            failure_reason=failure_reason,
            completed_at=completed_at,
        )

    def list_for_invoice(self, invoice_id: UUID) -> List[PaymentAttempt]:
        response = (
            self._client.table(_ATTEMPTS_TABLE)
            .select("*")
            .eq("invoice_id", str(invoice_id))
            .order("started_at_utc")
            .execute()
        )
        return [_row_to_attempt(row) for row in check_response(response, "list payment attempts")]


__all__ = ["PaymentAttemptRepository"]
