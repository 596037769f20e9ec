"""
Performance Record Service.

Records deliveries and labor logs for projects and lists them. Billed
records (invoice_id set) are read-only.
"""
import logging
import uuid
from datetime import date
from typing import List, Optional, Tuple, Type, TypeVar

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import BillingValidationError, ProjectNotFound
from billing_engine.models.performance import Delivery, LaborLog
from billing_engine.models.project import Project
from billing_engine.schemas.performance import DeliveryCreate, LaborLogCreate


logger = logging.getLogger(__name__)

RecordModel = TypeVar("RecordModel", Delivery, LaborLog)


class PerformanceService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_project(self, project_id: uuid.UUID) -> None:
        if not await self.db.get(Project, project_id):
            raise ProjectNotFound(f"Project {project_id} not found", {"project_id": str(project_id)})

    async def _ensure_unique(self, column, number: str) -> None:
        if await self.db.scalar(select(func.count()).where(column == number)):
            raise BillingValidationError(f"Record number {number} already exists", {"number": number})

    async def create_delivery(self, data: DeliveryCreate) -> Delivery:
        """Record a delivery."""
        await self._ensure_project(data.project_id)
        await self._ensure_unique(Delivery.delivery_number, data.delivery_number)

        delivery = Delivery(**data.model_dump(exclude={"status"}), status=data.status.value)
        self.db.add(delivery)
        await self.db.commit()
        await self.db.refresh(delivery)
        logger.info(f"Recorded delivery {delivery.delivery_number} for project {delivery.project_id}")
        return delivery

    async def create_labor_log(self, data: LaborLogCreate) -> LaborLog:
        """Record a labor log."""
        await self._ensure_project(data.project_id)
        await self._ensure_unique(LaborLog.log_number, data.log_number)

        log = LaborLog(**data.model_dump(exclude={"status"}), status=data.status.value)
        self.db.add(log)
        await self.db.commit()
        await self.db.refresh(log)
        logger.info(f"Recorded labor log {log.log_number} for project {log.project_id}")
        return log

    async def _list(
        self,
        model: Type[RecordModel],
        date_column,
        project_id: Optional[uuid.UUID],
        from_date: Optional[date],
        to_date: Optional[date],
        unbilled_only: bool,
        skip: int,
        limit: int,
    ) -> Tuple[List[RecordModel], int]:
        query = select(model)
        if project_id:
            query = query.where(model.project_id == project_id)
        if from_date:
            query = query.where(date_column >= from_date)
        if to_date:
            query = query.where(date_column <= to_date)
        if unbilled_only:
            query = query.where(model.invoice_id.is_(None))

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(date_column.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def list_deliveries(
        self,
        project_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        unbilled_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Delivery], int]:
        """List deliveries with filters."""
        return await self._list(
            Delivery, Delivery.delivery_date, project_id, from_date, to_date, unbilled_only, skip, limit
        )

    async def list_labor_logs(
        self,
        project_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        unbilled_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[LaborLog], int]:
        """List labor logs with filters."""
        return await self._list(
            LaborLog, LaborLog.work_date, project_id, from_date, to_date, unbilled_only, skip, limit
        )
