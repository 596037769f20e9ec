"""
Billing Rule API Endpoints.

- Project billing rules: how activity is priced
- Master billing rules: the fixed line-item template of a project
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import NotFoundError, RuleNotFound
from billing_engine.database import get_db
from billing_engine.schemas.billing_rule import (
    BillingRuleCreate, BillingRuleUpdate, BillingRuleResponse,
    MasterBillingRuleCreate, MasterBillingRuleUpdate, MasterBillingRuleResponse,
)
from billing_engine.services.billing_rule_service import BillingRuleService

router = APIRouter()
master_router = APIRouter()


# ============================================================================
# PROJECT BILLING RULES
# ============================================================================

@router.post(
    "",
    response_model=BillingRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Billing Rule"
)
async def create_rule(
    data: BillingRuleCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a billing rule. Formulas are validated before the rule is stored."""
    service = BillingRuleService(db)
    return await service.create_rule(data)


@router.get(
    "",
    response_model=List[BillingRuleResponse],
    summary="List Billing Rules"
)
async def list_rules(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List billing rules, highest priority first."""
    service = BillingRuleService(db)
    rules, _ = await service.list_rules(
        project_id=project_id,
        is_active=is_active,
        skip=skip,
        limit=limit
    )
    return rules


@router.get(
    "/{rule_id}",
    response_model=BillingRuleResponse,
    summary="Get Billing Rule"
)
async def get_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get billing rule details."""
    service = BillingRuleService(db)
    rule = await service.get_rule(rule_id)
    if not rule:
        raise RuleNotFound(f"Billing rule {rule_id} not found")
    return rule


@router.put(
    "/{rule_id}",
    response_model=BillingRuleResponse,
    summary="Update Billing Rule"
)
async def update_rule(
    rule_id: UUID,
    data: BillingRuleUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update a billing rule. Its rule type and creation sequence never change."""
    service = BillingRuleService(db)
    rule = await service.update_rule(rule_id, data)
    if not rule:
        raise RuleNotFound(f"Billing rule {rule_id} not found")
    return rule


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Billing Rule"
)
async def delete_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a billing rule."""
    service = BillingRuleService(db)
    if not await service.delete_rule(rule_id):
        raise RuleNotFound(f"Billing rule {rule_id} not found")


# ============================================================================
# MASTER BILLING RULES
# ============================================================================

@master_router.post(
    "",
    response_model=MasterBillingRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Master Billing Rule"
)
async def create_master_rule(
    data: MasterBillingRuleCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a master template. An active template deactivates the project's previous one."""
    service = BillingRuleService(db)
    return await service.create_master_rule(data)


@master_router.get(
    "",
    response_model=List[MasterBillingRuleResponse],
    summary="List Master Billing Rules"
)
async def list_master_rules(
    project_id: Optional[UUID] = Query(None, alias="projectId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List master billing rules."""
    service = BillingRuleService(db)
    masters, _ = await service.list_master_rules(
        project_id=project_id,
        is_active=is_active,
        skip=skip,
        limit=limit
    )
    return masters


@master_router.get(
    "/{master_id}",
    response_model=MasterBillingRuleResponse,
    summary="Get Master Billing Rule"
)
async def get_master_rule(
    master_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = BillingRuleService(db)
    master = await service.get_master_rule(master_id)
    if not master:
        raise NotFoundError(f"Master billing rule {master_id} not found")
    return master


@master_router.put(
    "/{master_id}",
    response_model=MasterBillingRuleResponse,
    summary="Update Master Billing Rule"
)
async def update_master_rule(
    master_id: UUID,
    data: MasterBillingRuleUpdate,
    db: AsyncSession = Depends(get_db),
):
    service = BillingRuleService(db)
    master = await service.update_master_rule(master_id, data)
    if not master:
        raise NotFoundError(f"Master billing rule {master_id} not found")
    return master


@master_router.delete(
    "/{master_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Master Billing Rule"
)
async def delete_master_rule(
    master_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    service = BillingRuleService(db)
    if not await service.delete_master_rule(master_id):
        raise NotFoundError(f"Master billing rule {master_id} not found")
