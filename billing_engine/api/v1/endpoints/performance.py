"""
Performance Record API Endpoints.

Deliveries and labor logs are the billable activity invoices are computed from.
"""
from datetime import date
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.database import get_db
from billing_engine.schemas.performance import (
    DeliveryCreate, DeliveryResponse, LaborLogCreate, LaborLogResponse
)
from billing_engine.services.performance_service import PerformanceService

delivery_router = APIRouter()
labor_router = APIRouter()


# ============================================================================
# DELIVERIES
# ============================================================================

@delivery_router.post(
    "",
    response_model=DeliveryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record Delivery"
)
async def create_delivery(
    data: DeliveryCreate,
    db: AsyncSession = Depends(get_db),
):
    service = PerformanceService(db)
    return await service.create_delivery(data)


@delivery_router.get(
    "",
    response_model=List[DeliveryResponse],
    summary="List Deliveries"
)
async def list_deliveries(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    unbilled_only: bool = Query(False, alias="unbilledOnly"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List deliveries, newest first."""
    service = PerformanceService(db)
    deliveries, _ = await service.list_deliveries(
        project_id=project_id,
        from_date=from_date,
        to_date=to_date,
        unbilled_only=unbilled_only,
        skip=skip,
        limit=limit
    )
    return deliveries


# ============================================================================
# LABOR LOGS
# ============================================================================

@labor_router.post(
    "",
    response_model=LaborLogResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record Labor Log"
)
async def create_labor_log(
    data: LaborLogCreate,
    db: AsyncSession = Depends(get_db),
):
    service = PerformanceService(db)
    return await service.create_labor_log(data)


@labor_router.get(
    "",
    response_model=List[LaborLogResponse],
    summary="List Labor Logs"
)
async def list_labor_logs(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    from_date: Optional[date] = Query(None, alias="fromDate"),
    to_date: Optional[date] = Query(None, alias="toDate"),
    unbilled_only: bool = Query(False, alias="unbilledOnly"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List labor logs, newest first."""
    service = PerformanceService(db)
    logs, _ = await service.list_labor_logs(
        project_id=project_id,
        from_date=from_date,
        to_date=to_date,
        unbilled_only=unbilled_only,
        skip=skip,
        limit=limit
    )
    return logs
