"""
Price List API Endpoints.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import NotFoundError
from billing_engine.database import get_db
from billing_engine.schemas.price_list import (
    PriceListCreate, PriceListEntryCreate, PriceListResponse
)
from billing_engine.services.price_list_service import PriceListService

router = APIRouter()


@router.post(
    "",
    response_model=PriceListResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Price List"
)
async def create_price_list(
    data: PriceListCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a price list together with its entries."""
    service = PriceListService(db)
    return await service.create_price_list(data)


@router.get(
    "",
    response_model=List[PriceListResponse],
    summary="List Price Lists"
)
async def list_price_lists(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    db: AsyncSession = Depends(get_db),
):
    service = PriceListService(db)
    return await service.list_price_lists(project_id=project_id)


@router.get(
    "/{price_list_id}",
    response_model=PriceListResponse,
    summary="Get Price List"
)
async def get_price_list(
    price_list_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = PriceListService(db)
    price_list = await service.get_price_list(price_list_id)
    if not price_list:
        raise NotFoundError(f"Price list {price_list_id} not found")
    return price_list


@router.post(
    "/{price_list_id}/entries",
    response_model=PriceListResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Price List Entry"
)
async def add_entry(
    price_list_id: UUID,
    data: PriceListEntryCreate,
    db: AsyncSession = Depends(get_db),
):
    """Add an entry; an existing entry with the same item key is replaced."""
    service = PriceListService(db)
    price_list = await service.add_entry(price_list_id, data)
    if not price_list:
        raise NotFoundError(f"Price list {price_list_id} not found")
    return price_list
