"""
Price List Schemas.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import Field

from billing_engine.schemas.base import BaseResponseSchema, BaseCreateSchema


class PriceListEntryCreate(BaseCreateSchema):
    """Schema for adding an entry to a price list."""
    item_key: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    prices: Optional[Dict[str, Decimal]] = None


class PriceListCreate(BaseCreateSchema):
    """Schema for creating a price list with its entries."""
    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=200)
    project_id: Optional[UUID] = None
    entries: List[PriceListEntryCreate] = Field(default_factory=list)


class PriceListEntryResponse(BaseResponseSchema):
    id: UUID
    item_key: str
    description: Optional[str] = None
    unit_price: Optional[Decimal] = None
    prices: Optional[Dict[str, Decimal]] = None


class PriceListResponse(BaseResponseSchema):
    """Schema for price list response."""
    id: UUID
    code: str
    name: str
    project_id: Optional[UUID] = None
    is_active: bool
    created_at: datetime
    entries: List[PriceListEntryResponse] = Field(default_factory=list)
