"""
Performance Record Schemas.

Deliveries and labor logs as recorded by operations.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from billing_engine.models.performance import DeliveryStatus, LaborLogStatus
from billing_engine.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============================================================================
# DELIVERY SCHEMAS
# ============================================================================

class DeliveryBase(BaseCreateSchema):
    """Base schema for delivery."""
    delivery_number: str = Field(..., min_length=1, max_length=50)
    delivery_date: date
    part_no: Optional[str] = Field(None, max_length=50)
    part_name: Optional[str] = Field(None, max_length=200)
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    unit: str = Field(default="EA", max_length=20)
    pallet_no: Optional[str] = Field(None, max_length=50)
    pallet_type: Optional[str] = Field(None, max_length=50)
    pallet_count: Optional[Decimal] = Field(None, ge=0)
    container_no: Optional[str] = Field(None, max_length=50)
    container_type: Optional[str] = Field(None, max_length=50)
    weight: Optional[Decimal] = Field(None, ge=0)
    volume: Optional[Decimal] = Field(None, ge=0)
    po_number: Optional[str] = Field(None, max_length=50)
    so_number: Optional[str] = Field(None, max_length=50)
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    notes: Optional[str] = None


class DeliveryCreate(DeliveryBase):
    """Schema for recording a delivery."""
    project_id: UUID


class DeliveryResponse(BaseResponseSchema):
    """Schema for delivery response."""
    id: UUID
    project_id: UUID
    delivery_number: str
    delivery_date: date
    part_no: Optional[str] = None
    part_name: Optional[str] = None
    quantity: Decimal
    unit: str
    pallet_no: Optional[str] = None
    pallet_type: Optional[str] = None
    pallet_count: Optional[Decimal] = None
    container_no: Optional[str] = None
    container_type: Optional[str] = None
    weight: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    po_number: Optional[str] = None
    so_number: Optional[str] = None
    status: DeliveryStatus
    invoice_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


# ============================================================================
# LABOR LOG SCHEMAS
# ============================================================================

class LaborLogBase(BaseCreateSchema):
    """Base schema for labor log."""
    log_number: str = Field(..., min_length=1, max_length=50)
    work_date: date
    work_type: str = Field(..., min_length=1, max_length=50)
    work_description: Optional[str] = None
    hours: Decimal = Field(..., ge=0)
    labor_rate: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[Decimal] = Field(None, ge=0)
    quantity_unit: Optional[str] = Field(None, max_length=20)
    worker_name: Optional[str] = Field(None, max_length=100)
    po_number: Optional[str] = Field(None, max_length=50)
    status: LaborLogStatus = LaborLogStatus.COMPLETED
    notes: Optional[str] = None


class LaborLogCreate(LaborLogBase):
    """Schema for recording a labor log."""
    project_id: UUID


class LaborLogResponse(BaseResponseSchema):
    """Schema for labor log response."""
    id: UUID
    project_id: UUID
    log_number: str
    work_date: date
    work_type: str
    work_description: Optional[str] = None
    hours: Decimal
    labor_rate: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    quantity_unit: Optional[str] = None
    worker_name: Optional[str] = None
    po_number: Optional[str] = None
    status: LaborLogStatus
    invoice_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime
