"""
Domain: billing error taxonomy.

Every failure surfaced by the billing core is one of these types so callers
(HTTP handlers, scripts, the batch dispatcher) can branch on the class rather
than on message text.
"""

from __future__ import annotations

from typing import Optional


class BillingError(Exception):
    """Base class for all billing core errors."""


class ValidationError(BillingError):
    """Malformed or missing input. Never retried automatically."""


class NotFoundError(BillingError):
    """A referenced invoice, buyer, item or settlement does not exist."""


class ConflictError(BillingError):
    """
    A guarded transition was attempted from a status that does not allow it,
    or the work was already done (double send, concurrent reconcile).

    Callers treat this as a no-op success.
    """

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


class GatewayError(BillingError):
    """Transient or permanent failure reported by the payment gateway."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        retryable: bool = False,
    ):
        self.code = code
        self.retryable = retryable
        super().__init__(message)


__all__ = [
    "BillingError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "GatewayError",
]
