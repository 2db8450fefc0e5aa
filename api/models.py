"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Money crosses the API as major-unit decimals ("132.00"); internally every
amount is an integer number of minor units.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.invoice import Invoice, LineItem
from domain.money import to_major_units, to_minor_units
from domain.settlement import Adjustment, AdjustmentKind, SettlementLine, SettlementStatement


# ============================================================================
# Invoice Models
# ============================================================================

class CreateInvoiceRequest(BaseModel):
    """Request to invoice a won lot."""
    auction_item_id: UUID = Field(..., description="Auction item that was won")
    buyer_id: UUID = Field(..., description="Winning buyer")
    bid_id: Optional[UUID] = Field(
        default=None,
        description="Winning bid; defaults to the item's high bid"
    )
    notes: Optional[str] = Field(default=None, max_length=2000)

    class Config:
        json_schema_extra = {
            "example": {
                "auction_item_id": "123e4567-e89b-12d3-a456-426614174000",
                "buyer_id": "123e4567-e89b-12d3-a456-426614174001",
                "notes": "Collection from the saleroom only"
            }
        }


class LineItemResponse(BaseModel):
    """One invoiced lot."""
    auction_item_id: UUID
    winning_bid_id: Optional[UUID] = None
    hammer_price: Decimal
    buyers_premium: Decimal
    tax: Decimal
    line_total: Decimal

    @classmethod
    def from_line(cls, line: LineItem) -> "LineItemResponse":
        return cls(
            auction_item_id=line.auction_item_id,
            winning_bid_id=line.winning_bid_id,
            hammer_price=to_major_units(line.hammer_price),
            buyers_premium=to_major_units(line.buyers_premium_share),
            tax=to_major_units(line.tax_share),
            line_total=to_major_units(line.line_total),
        )


class InvoiceResponse(BaseModel):
    """Invoice with its line items."""
    invoice_id: UUID
    invoice_number: str
    buyer_id: UUID
    auction_id: UUID
    status: str  # "Unpaid", "Paid" or "Cancelled"
    subtotal: Decimal
    buyers_premium: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    created_at: datetime
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_link_url: Optional[str] = None
    line_items: List[LineItemResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "invoice_id": "123e4567-e89b-12d3-a456-426614174010",
                "invoice_number": "INV-20260119143005-7QK2ZD",
                "buyer_id": "123e4567-e89b-12d3-a456-426614174001",
                "auction_id": "123e4567-e89b-12d3-a456-426614174002",
                "status": "Unpaid",
                "subtotal": "100.00",
                "buyers_premium": "10.00",
                "tax_amount": "22.00",
                "total_amount": "132.00",
                "created_at": "2026-01-19T14:30:05Z",
                "sent_at": None,
                "paid_at": None,
                "cancelled_at": None,
                "payment_link_url": None,
                "line_items": []
            }
        }

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            invoice_id=invoice.invoice_id,
            invoice_number=invoice.invoice_number,
            buyer_id=invoice.buyer_id,
            auction_id=invoice.auction_id,
            status=invoice.status.value,
            subtotal=to_major_units(invoice.subtotal),
            buyers_premium=to_major_units(invoice.buyers_premium),
            tax_amount=to_major_units(invoice.tax_amount),
            total_amount=to_major_units(invoice.total_amount),
            created_at=invoice.created_at,
            sent_at=invoice.sent_at,
            paid_at=invoice.paid_at,
            cancelled_at=invoice.cancelled_at,
            payment_link_url=invoice.payment_link_url,
            line_items=[LineItemResponse.from_line(line) for line in invoice.line_items],
        )


class MarkPaidRequest(BaseModel):
    """Admin confirmation of an offline payment."""
    reference: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Bank transfer or receipt reference"
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class TransitionResponse(BaseModel):
    """Result of an idempotent transition; `changed` is false for a no-op."""
    changed: bool
    status: Optional[str] = None
    invoice: Optional[InvoiceResponse] = None


class ReconcileResponse(BaseModel):
    """Outcome of collecting payment for one invoice."""
    changed: bool = True
    invoice_id: UUID
    outcome: Optional[str] = None  # "Charged", "LinkIssued", "AlreadySettled"
    payment_link_url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "changed": True,
                "invoice_id": "123e4567-e89b-12d3-a456-426614174010",
                "outcome": "LinkIssued",
                "payment_link_url": "https://buy.stripe.com/test_123"
            }
        }


# ============================================================================
# Auction Models
# ============================================================================

class AuctionCloseResponse(BaseModel):
    """Invoices raised for an auction's winners."""
    auction_id: UUID
    invoices_created: int
    invoice_ids: List[UUID]
    skipped_buyer_ids: List[UUID]
    unsold_item_ids: List[UUID]


class SentInvoiceResponse(BaseModel):
    invoice_id: UUID
    invoice_number: str
    outcome: str
    payment_link_url: Optional[str] = None


class FailedInvoiceResponse(BaseModel):
    invoice_id: UUID
    invoice_number: str
    reason: str


class BatchDispatchResponse(BaseModel):
    """Partial-success report for sending an auction's invoices."""
    auction_id: UUID
    sent_count: int
    failed_count: int
    sent: List[SentInvoiceResponse]
    failed: List[FailedInvoiceResponse]
    skipped: List[UUID]

    class Config:
        json_schema_extra = {
            "example": {
                "auction_id": "123e4567-e89b-12d3-a456-426614174002",
                "sent_count": 11,
                "failed_count": 1,
                "sent": [],
                "failed": [
                    {
                        "invoice_id": "123e4567-e89b-12d3-a456-426614174010",
                        "invoice_number": "INV-20260119143005-7QK2ZD",
                        "reason": "Stripe request to /payment_links failed"
                    }
                ],
                "skipped": []
            }
        }


# ============================================================================
# Settlement Models
# ============================================================================

class AdjustmentModel(BaseModel):
    """Named deduction from a seller's payout."""
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    kind: AdjustmentKind = AdjustmentKind.EXPENSE

    def to_domain(self) -> Adjustment:
        return Adjustment(name=self.name, amount=to_minor_units(self.amount), kind=self.kind)

    @classmethod
    def from_domain(cls, adjustment: Adjustment) -> "AdjustmentModel":
        return cls(
            name=adjustment.name,
            amount=to_major_units(adjustment.amount),
            kind=adjustment.kind,
        )


class SettlementRequest(BaseModel):
    """Request to compute a seller's settlement for one auction."""
    seller_id: UUID
    auction_id: UUID
    adjustments: List[AdjustmentModel] = Field(default_factory=list)
    commission_percent: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="Flat commission override; defaults to the seller's terms"
    )
    commission_vat_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "seller_id": "123e4567-e89b-12d3-a456-426614174003",
                "auction_id": "123e4567-e89b-12d3-a456-426614174002",
                "adjustments": [
                    {"name": "Shipping handling fee", "amount": "12.50", "kind": "expense"}
                ],
                "commission_percent": "15"
            }
        }


class ReviseAdjustmentsRequest(BaseModel):
    adjustments: List[AdjustmentModel]


class SettlementLineResponse(BaseModel):
    item_id: UUID
    name: str
    lot_number: Optional[str] = None
    disposition: str  # "Sold", "UnsoldNoBids", "UnsoldBelowReserve"
    hammer_price: Decimal
    high_bid: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None

    @classmethod
    def from_line(cls, line: SettlementLine) -> "SettlementLineResponse":
        return cls(
            item_id=line.item_id,
            name=line.name,
            lot_number=line.lot_number,
            disposition=line.disposition.value,
            hammer_price=to_major_units(line.hammer_price),
            high_bid=None if line.high_bid is None else to_major_units(line.high_bid),
            reserve_price=None if line.reserve_price is None else to_major_units(line.reserve_price),
        )


class SettlementResponse(BaseModel):
    """Seller payout statement."""
    settlement_id: UUID
    reference: str
    seller_id: UUID
    auction_id: UUID
    status: str  # "Draft", "Sent" or "Paid"
    sold_items: List[SettlementLineResponse]
    unsold_items: List[SettlementLineResponse]
    total_sales: Decimal
    commission: Decimal
    commission_description: str
    adjustments: List[AdjustmentModel]
    net_payout: Decimal
    generated_at: datetime
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def from_statement(cls, statement: SettlementStatement) -> "SettlementResponse":
        return cls(
            settlement_id=statement.settlement_id,
            reference=statement.reference,
            seller_id=statement.seller_id,
            auction_id=statement.auction_id,
            status=statement.status.value,
            sold_items=[SettlementLineResponse.from_line(line) for line in statement.sold_items],
            unsold_items=[SettlementLineResponse.from_line(line) for line in statement.unsold_items],
            total_sales=to_major_units(statement.total_sales),
            commission=to_major_units(statement.commission),
            commission_description=statement.commission_description,
            adjustments=[AdjustmentModel.from_domain(adj) for adj in statement.adjustments],
            net_payout=to_major_units(statement.net_payout),
            generated_at=statement.generated_at,
            sent_at=statement.sent_at,
            paid_at=statement.paid_at,
        )


class SettlementTransitionResponse(BaseModel):
    changed: bool
    status: Optional[str] = None
    settlement: Optional[SettlementResponse] = None


# ============================================================================
# Webhook Models
# ============================================================================

class WebhookResponse(BaseModel):
    received: bool = True
    outcome: str


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Error body returned with 4xx/5xx responses."""
    detail: str

    class Config:
        json_schema_extra = {
            "example": {
                "detail": "No qualifying bid for item and buyer"
            }
        }


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Not found"},
    502: {"model": ErrorResponse, "description": "Payment provider unavailable"},
}
