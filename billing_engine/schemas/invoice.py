"""
Invoice Schemas.

Preview / generate requests, the preview envelope, persisted invoice
responses and status transition bodies.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field, model_validator

from billing_engine.models.invoice import InvoiceStatus
from billing_engine.schemas.base import BaseResponseSchema, BaseCreateSchema
from billing_engine.schemas.billing_rule import ActiveRuleSummary, MasterItem


# ============================================================================
# REQUESTS
# ============================================================================

class InvoicePeriodRequest(BaseCreateSchema):
    """Closed billing period of a project; both dates inclusive."""
    project_id: UUID
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("periodEnd must not be before periodStart")
        return self


class InvoicePreviewRequest(InvoicePeriodRequest):
    """Schema for previewing invoice lines. Nothing is persisted."""
    pass


class InvoiceGenerateRequest(InvoicePeriodRequest):
    """
    Schema for generating an invoice.

    items, when given, replace the project's master template lines.
    """
    period_month: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    items: Optional[List[MasterItem]] = None
    notes: Optional[str] = None


class InvoiceCancelRequest(BaseCreateSchema):
    reason: Optional[str] = None


class InvoicePayRequest(BaseCreateSchema):
    paid_date: Optional[date] = None


# ============================================================================
# PREVIEW RESPONSE
# ============================================================================

class InvoiceLinePreview(BaseResponseSchema):
    """Computed line; `error` is set when its price could not be resolved."""
    line_number: int
    rule_id: Optional[UUID] = None
    rule_name: Optional[str] = None
    rule_type: Optional[str] = None
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    amount: Decimal
    grouping_key: Optional[str] = None
    grouping_value: Optional[str] = None
    source_type: Optional[str] = None
    source_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class RecordDigest(BaseResponseSchema):
    id: UUID
    number: str
    event_date: date
    key: Optional[str] = None
    measure: Optional[Decimal] = None


class PerformanceDataSummary(BaseResponseSchema):
    delivery_count: int
    labor_log_count: int
    total_delivery_quantity: Decimal
    total_labor_hours: Decimal
    deliveries: List[RecordDigest]
    labor_logs: List[RecordDigest]


class ProjectBrief(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    currency: str


class PreviewTotals(BaseResponseSchema):
    subtotal: Decimal
    tax_rate: Decimal
    tax: Decimal
    total_amount: Decimal
    line_count: int


class InvoicePreviewResponse(BaseResponseSchema):
    """Schema for invoice preview response."""
    project: ProjectBrief
    period_start: date
    period_end: date
    invoice_lines: List[InvoiceLinePreview]
    performance_data: PerformanceDataSummary
    active_rules: List[ActiveRuleSummary]
    warnings: List[str]
    summary: PreviewTotals


# ============================================================================
# INVOICE RESPONSES
# ============================================================================

class InvoiceItemResponse(BaseResponseSchema):
    """Schema for invoice line response."""
    id: UUID
    line_number: int
    rule_id: Optional[UUID] = None
    rule_type: Optional[str] = None
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    amount: Decimal
    grouping_key: Optional[str] = None
    grouping_value: Optional[str] = None
    source_type: Optional[str] = None
    source_ids: Optional[List[str]] = None


class InvoiceResponse(BaseResponseSchema):
    """Schema for invoice response."""
    id: UUID
    invoice_number: str
    status: InvoiceStatus
    display_status: InvoiceStatus
    project_id: UUID
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = None
    po_number: Optional[str] = None
    period_month: str
    period_start: date
    period_end: date
    invoice_date: date
    due_date: date
    paid_date: Optional[date] = None
    subtotal: Decimal
    tax_rate: Decimal
    tax: Decimal
    total_amount: Decimal
    currency: str
    generated_from: str
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    line_items: List[InvoiceItemResponse] = Field(default_factory=list)


class InvoiceBrief(BaseResponseSchema):
    """Schema for invoice list rows."""
    id: UUID
    invoice_number: str
    status: InvoiceStatus
    display_status: InvoiceStatus
    project_id: UUID
    period_month: str
    period_start: date
    period_end: date
    due_date: date
    total_amount: Decimal
    currency: str
    created_at: datetime
