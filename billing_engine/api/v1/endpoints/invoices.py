"""
Invoice API Endpoints.

- Preview: computed lines, nothing persisted
- Generate: persisted draft invoice for a closed period
- Lifecycle: approve, send, pay, cancel
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import InvoiceNotFound
from billing_engine.database import get_db
from billing_engine.models.invoice import InvoiceStatus
from billing_engine.schemas.invoice import (
    InvoicePreviewRequest, InvoicePreviewResponse,
    InvoiceGenerateRequest, InvoiceResponse, InvoiceBrief,
    InvoiceCancelRequest, InvoicePayRequest,
)
from billing_engine.services.invoice_service import InvoiceService

router = APIRouter()


# ============================================================================
# PREVIEW / GENERATE
# ============================================================================

@router.post(
    "/preview",
    response_model=InvoicePreviewResponse,
    summary="Preview Invoice"
)
async def preview_invoice(
    data: InvoicePreviewRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Compute the invoice lines of a period without persisting anything.

    Missing rules are reported in `warnings`; lines whose price cannot be
    resolved carry an `error` and a zero amount.
    """
    service = InvoiceService(db)
    return await service.preview(data.project_id, data.period_start, data.period_end)


@router.post(
    "/generate",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate Invoice"
)
async def generate_invoice(
    data: InvoiceGenerateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Generate a draft invoice for a period and mark its records billed."""
    service = InvoiceService(db)
    return await service.generate(
        data.project_id,
        data.period_start,
        data.period_end,
        period_month=data.period_month,
        items=data.items,
        notes=data.notes,
    )


# ============================================================================
# QUERIES
# ============================================================================

@router.get(
    "",
    response_model=List[InvoiceBrief],
    summary="List Invoices"
)
async def list_invoices(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List invoices. status=overdue selects sent invoices past their due date."""
    service = InvoiceService(db)
    invoices, _ = await service.list_invoices(
        project_id=project_id,
        status=status_filter,
        skip=skip,
        limit=limit
    )
    return invoices


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get Invoice"
)
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get invoice with lines."""
    service = InvoiceService(db)
    invoice = await service.get_invoice(invoice_id)
    if not invoice:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found")
    return invoice


# ============================================================================
# LIFECYCLE
# ============================================================================

@router.patch(
    "/{invoice_id}/approve",
    response_model=InvoiceResponse,
    summary="Approve Invoice"
)
async def approve_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """draft -> approved"""
    service = InvoiceService(db)
    return await service.approve(invoice_id)


@router.patch(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Send Invoice"
)
async def send_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """approved -> sent"""
    service = InvoiceService(db)
    return await service.send(invoice_id)


@router.patch(
    "/{invoice_id}/pay",
    response_model=InvoiceResponse,
    summary="Mark Invoice Paid"
)
async def pay_invoice(
    invoice_id: UUID,
    data: Optional[InvoicePayRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """sent -> paid"""
    service = InvoiceService(db)
    return await service.mark_paid(invoice_id, paid_date=data.paid_date if data else None)


@router.patch(
    "/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="Cancel Invoice"
)
async def cancel_invoice(
    invoice_id: UUID,
    data: Optional[InvoiceCancelRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Cancel a draft, approved or sent invoice and release its records and period."""
    service = InvoiceService(db)
    return await service.cancel(invoice_id, reason=data.reason if data else None)
