"""
Domain: payment reconciliation records.

A PaymentAttempt is the audit record of one Reconcile call. While the call is
in flight the attempt is Pending; the store allows at most one Pending attempt
per invoice, which is what serialises concurrent reconciles.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from .time import require_utc_timestamp


class PaymentMethodKind(str, Enum):
    AUTO_CHARGE = "AutoCharge"
    PAY_LINK = "PayLink"


class PaymentOutcome(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    LINK_ISSUED = "LinkIssued"
    ABANDONED = "Abandoned"


@dataclass(frozen=True, slots=True)
class PaymentAttempt:
    attempt_id: UUID
    invoice_id: UUID
    method: PaymentMethodKind
    outcome: PaymentOutcome
    started_at: datetime
    gateway_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("started_at", self.started_at)
        if self.completed_at is not None:
            require_utc_timestamp("completed_at", self.completed_at)

    @property
    def idempotency_key(self) -> str:
        """Key sent with gateway writes so a replayed request never charges twice."""

        return f"invoice-{self.invoice_id}-attempt-{self.attempt_id}"


@dataclass(frozen=True, slots=True)
class ChargeResult:
    """Gateway answer to an off-session charge."""

    succeeded: bool
    charge_ref: Optional[str]
    status: str
    decline_code: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PaymentLink:
    link_ref: str
    url: str


class ReconcileOutcome(str, Enum):
    CHARGED = "Charged"
    LINK_ISSUED = "LinkIssued"
    ALREADY_SETTLED = "AlreadySettled"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    invoice_id: UUID
    outcome: ReconcileOutcome
    gateway_ref: Optional[str] = None
    payment_link_url: Optional[str] = None
    charge_failure_reason: Optional[str] = None
