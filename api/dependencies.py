"""
Request dependencies.

Services are built once by the application lifespan and stored on
`app.state.services`. Routes depend on the narrow accessors below, which tests
replace through `app.dependency_overrides`.
"""

from fastapi import Depends, HTTPException, Request

from domain.errors import BillingError, ConflictError, GatewayError, NotFoundError, ValidationError
from services.invoice_dispatch_service import BatchInvoiceDispatcher
from services.invoice_service import InvoiceLifecycleManager
from services.settlement_service import SettlementCalculator
from services.webhook_service import GatewayWebhookHandler
from services.wiring import BillingServices


def get_services(request: Request) -> BillingServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Billing services are not initialised")
    return services


def get_invoice_manager(services: BillingServices = Depends(get_services)) -> InvoiceLifecycleManager:
    return services.invoices


def get_batch_dispatcher(services: BillingServices = Depends(get_services)) -> BatchInvoiceDispatcher:
    return services.dispatcher


def get_settlement_calculator(services: BillingServices = Depends(get_services)) -> SettlementCalculator:
    return services.settlements


def get_webhook_handler(services: BillingServices = Depends(get_services)) -> GatewayWebhookHandler:
    return services.webhooks


def http_error(exc: BillingError) -> HTTPException:
    """
    Map a billing error to an HTTP error.

    ConflictError is not mapped here: routes answer it with `changed: false`.
    Gateway details stay in the logs.
    """

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, GatewayError):
        return HTTPException(status_code=502, detail="Payment provider unavailable, please retry later")
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
