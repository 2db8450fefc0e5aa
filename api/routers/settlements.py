"""
Settlements API Endpoints.

Seller payout statements: preview, compute, revise, send and pay.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import get_settlement_calculator, http_error
from api.models import (
    ERROR_RESPONSES,
    ReviseAdjustmentsRequest,
    SettlementRequest,
    SettlementResponse,
    SettlementTransitionResponse,
)
from domain.errors import BillingError, ConflictError
from domain.settlement import CommissionPolicy, FlatCommission
from services.settlement_service import SettlementCalculator

router = APIRouter()


def _policy(request: SettlementRequest) -> Optional[CommissionPolicy]:
    if request.commission_percent is None:
        return None
    return FlatCommission(request.commission_percent)


@router.post(
    "/settlements/preview",
    response_model=SettlementResponse,
    responses=ERROR_RESPONSES,
    summary="Preview Settlement",
    description="Compute a seller's statement without saving it."
)
def preview_settlement(
    request: SettlementRequest,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    try:
        statement = calculator.preview_settlement(
            request.seller_id,
            request.auction_id,
            [adj.to_domain() for adj in request.adjustments],
            commission_policy=_policy(request),
            commission_vat_percent=request.commission_vat_percent,
        )
    except BillingError as e:
        raise http_error(e)
    return SettlementResponse.from_statement(statement)


@router.post(
    "/settlements",
    response_model=SettlementResponse,
    responses=ERROR_RESPONSES,
    status_code=201,
    summary="Compute Settlement",
)
def compute_settlement(
    request: SettlementRequest,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    """
    Compute and save a Draft settlement for one seller in one auction.

    **Partition:**
    - Sold: high bid at or above the reserve (or no reserve)
    - Unsold, no bids
    - Unsold, below reserve: the bid is shown but contributes nothing

    net payout = total sales - commission - sum(adjustments).
    A negative payout is rejected with 400 for manual review.
    """
    try:
        statement = calculator.compute_settlement(
            request.seller_id,
            request.auction_id,
            [adj.to_domain() for adj in request.adjustments],
            commission_policy=_policy(request),
            commission_vat_percent=request.commission_vat_percent,
        )
    except BillingError as e:
        raise http_error(e)
    return SettlementResponse.from_statement(statement)


@router.get(
    "/settlements/{settlement_id}",
    response_model=SettlementResponse,
    responses=ERROR_RESPONSES,
    summary="Get Settlement",
)
def get_settlement(
    settlement_id: UUID,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    try:
        return SettlementResponse.from_statement(calculator.get(settlement_id))
    except BillingError as e:
        raise http_error(e)


@router.patch(
    "/settlements/{settlement_id}/adjustments",
    response_model=SettlementResponse,
    responses=ERROR_RESPONSES,
    summary="Revise Adjustments",
)
def revise_adjustments(
    settlement_id: UUID,
    request: ReviseAdjustmentsRequest,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    """Replace the itemised adjustments of a Draft settlement."""
    try:
        statement = calculator.revise_adjustments(
            settlement_id, [adj.to_domain() for adj in request.adjustments]
        )
    except BillingError as e:
        raise http_error(e)
    return SettlementResponse.from_statement(statement)


@router.post(
    "/settlements/{settlement_id}/send",
    response_model=SettlementTransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Send Settlement",
)
def send_settlement(
    settlement_id: UUID,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    try:
        statement, changed = calculator.mark_sent(settlement_id)
    except ConflictError as e:
        return SettlementTransitionResponse(changed=False, status=e.current_status)
    except BillingError as e:
        raise http_error(e)
    return SettlementTransitionResponse(
        changed=changed,
        status=statement.status.value,
        settlement=SettlementResponse.from_statement(statement),
    )


@router.post(
    "/settlements/{settlement_id}/pay",
    response_model=SettlementTransitionResponse,
    responses=ERROR_RESPONSES,
    summary="Mark Settlement Paid",
)
def pay_settlement(
    settlement_id: UUID,
    calculator: SettlementCalculator = Depends(get_settlement_calculator),
):
    try:
        statement, changed = calculator.mark_paid(settlement_id)
    except ConflictError as e:
        return SettlementTransitionResponse(changed=False, status=e.current_status)
    except BillingError as e:
        raise http_error(e)
    return SettlementTransitionResponse(
        changed=changed,
        status=statement.status.value,
        settlement=SettlementResponse.from_statement(statement),
    )
