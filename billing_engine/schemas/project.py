"""
Project Schemas.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from billing_engine.config import settings
from billing_engine.schemas.base import (
    BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
)


class ProjectBase(BaseCreateSchema):
    """Base schema for project."""
    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=200)
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    po_number: Optional[str] = Field(None, max_length=50)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    currency_precision: Optional[int] = Field(None, ge=0, le=4)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    payment_terms_days: int = Field(default=settings.DEFAULT_PAYMENT_TERMS_DAYS, ge=0, le=180)


class ProjectCreate(ProjectBase):
    """Schema for creating a project."""
    pass


class ProjectUpdate(BaseUpdateSchema):
    """Schema for updating a project."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    po_number: Optional[str] = Field(None, max_length=50)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    currency_precision: Optional[int] = Field(None, ge=0, le=4)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    payment_terms_days: Optional[int] = Field(None, ge=0, le=180)
    is_active: Optional[bool] = None


class ProjectResponse(BaseResponseSchema):
    """Schema for project response."""
    id: UUID
    code: str
    name: str
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = None
    po_number: Optional[str] = None
    currency: str
    currency_precision: Optional[int] = None
    tax_rate: Optional[Decimal] = None
    payment_terms_days: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
