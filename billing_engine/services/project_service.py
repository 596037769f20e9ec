"""
Project Service.

Projects are maintained elsewhere; this service covers what the billing
engine needs to exercise and configure them.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.config import settings
from billing_engine.core.exceptions import BillingValidationError
from billing_engine.models.project import Project
from billing_engine.models.billing_sequence import SequenceScope
from billing_engine.schemas.project import ProjectCreate, ProjectUpdate
from billing_engine.services.billing_sequence_service import BillingSequenceService


logger = logging.getLogger(__name__)


class ProjectService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_project(self, data: ProjectCreate) -> Project:
        """Create a project with a unique code and its invoice number sequence."""
        code = data.code.upper()
        existing = await self.db.scalar(select(Project.id).where(Project.code == code))
        if existing:
            raise BillingValidationError(f"Project code {code} already exists", {"code": code})

        project = Project(
            **data.model_dump(exclude={"code", "currency"}),
            code=code,
            currency=(data.currency or settings.DEFAULT_CURRENCY).upper(),
        )
        self.db.add(project)
        await self.db.flush()
        await BillingSequenceService(self.db).create_sequence(SequenceScope.INVOICE, str(project.id))
        await self.db.commit()
        await self.db.refresh(project)

        logger.info(f"Created project {project.code}")
        return project

    async def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        return await self.db.get(Project, project_id)

    async def list_projects(
        self,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Project], int]:
        """List projects."""
        query = select(Project)
        if is_active is not None:
            query = query.where(Project.is_active == is_active)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(Project.code).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def update_project(self, project_id: uuid.UUID, data: ProjectUpdate) -> Optional[Project]:
        project = await self.get_project(project_id)
        if not project:
            return None

        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "currency" and value:
                value = value.upper()
            setattr(project, field, value)
        project.updated_at = datetime.now(timezone.utc)

        await self.db.commit()
        await self.db.refresh(project)
        return project
