"""
Project API Endpoints.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import ProjectNotFound
from billing_engine.database import get_db
from billing_engine.schemas.project import ProjectCreate, ProjectUpdate, ProjectResponse
from billing_engine.services.project_service import ProjectService

router = APIRouter()


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Project"
)
async def create_project(
    data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a billable project."""
    service = ProjectService(db)
    return await service.create_project(data)


@router.get(
    "",
    response_model=List[ProjectResponse],
    summary="List Projects"
)
async def list_projects(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    service = ProjectService(db)
    projects, _ = await service.list_projects(is_active=is_active, skip=skip, limit=limit)
    return projects


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get Project"
)
async def get_project(
    project_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = ProjectService(db)
    project = await service.get_project(project_id)
    if not project:
        raise ProjectNotFound(f"Project {project_id} not found")
    return project


@router.put(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Update Project"
)
async def update_project(
    project_id: UUID,
    data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update project billing settings. Issued invoices keep their totals."""
    service = ProjectService(db)
    project = await service.update_project(project_id, data)
    if not project:
        raise ProjectNotFound(f"Project {project_id} not found")
    return project
