"""
Billing Rule Service.

CRUD for project billing rules and master billing templates.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import BillingValidationError, ProjectNotFound
from billing_engine.models.billing_rule import (
    ProjectBillingRule, MasterBillingRule, PriceSource, GroupingKey
)
from billing_engine.models.billing_sequence import SequenceScope
from billing_engine.models.project import Project
from billing_engine.schemas.billing_rule import (
    BillingRuleCreate, BillingRuleUpdate,
    MasterBillingRuleCreate, MasterBillingRuleUpdate,
    check_rule_settings,
)
from billing_engine.schemas.rule_config import RuleConfig, parse_rule_config, dump_rule_config
from billing_engine.services.billing_sequence_service import BillingSequenceService
from billing_engine.services.formula import validate_formula
from billing_engine.services.price_resolver import FORMULA_VARIABLES


logger = logging.getLogger(__name__)


class BillingRuleService:
    """Service for billing rule and master template management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_project(self, project_id: uuid.UUID) -> Project:
        project = await self.db.get(Project, project_id)
        if not project:
            raise ProjectNotFound(f"Project {project_id} not found", {"project_id": str(project_id)})
        return project

    @staticmethod
    def _check_formula(config: RuleConfig) -> None:
        """Reject formulas that do not parse or use unknown names (FormulaError)."""
        for formula in (config.formula, config.group_formula):
            if formula:
                validate_formula(formula, FORMULA_VARIABLES)

    # ========================================================================
    # PROJECT BILLING RULES
    # ========================================================================

    async def create_rule(self, data: BillingRuleCreate) -> ProjectBillingRule:
        """Create a billing rule; its creation sequence is assigned here and never changes."""
        await self._ensure_project(data.project_id)
        self._check_formula(data.config)

        sequence_service = BillingSequenceService(self.db)
        creation_seq = await sequence_service.next_number(SequenceScope.RULE)

        rule = ProjectBillingRule(
            project_id=data.project_id,
            rule_name=data.rule_name,
            description=data.description,
            rule_type=data.rule_type.value,
            unit_basis=data.unit_basis.value,
            price_source=data.price_source.value,
            grouping_key=data.grouping_key.value,
            config=dump_rule_config(data.config),
            priority=data.priority,
            creation_seq=creation_seq,
            is_active=data.is_active,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(
            f"Created billing rule '{rule.rule_name}' ({rule.rule_type}, priority {rule.priority}, "
            f"seq {rule.creation_seq}) for project {rule.project_id}"
        )
        return rule

    async def get_rule(self, rule_id: uuid.UUID) -> Optional[ProjectBillingRule]:
        """Get billing rule by ID."""
        return await self.db.get(ProjectBillingRule, rule_id)

    async def list_rules(
        self,
        project_id: Optional[uuid.UUID] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[ProjectBillingRule], int]:
        """List billing rules, highest priority first."""
        query = select(ProjectBillingRule)

        if project_id:
            query = query.where(ProjectBillingRule.project_id == project_id)
        if is_active is not None:
            query = query.where(ProjectBillingRule.is_active == is_active)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(
            ProjectBillingRule.priority.desc(),
            ProjectBillingRule.creation_seq.asc()
        ).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def update_rule(
        self,
        rule_id: uuid.UUID,
        data: BillingRuleUpdate,
    ) -> Optional[ProjectBillingRule]:
        """
        Update a billing rule.

        Raises:
            BillingValidationError: the merged rule is inconsistent
            FormulaError: the new formula does not parse
        """
        rule = await self.get_rule(rule_id)
        if not rule:
            return None

        update_data = data.model_dump(exclude_unset=True)
        raw_config = update_data.pop("config", None)

        try:
            config = parse_rule_config(
                rule.rule_type, raw_config if raw_config is not None else rule.config
            )
        except ValidationError as e:
            raise BillingValidationError(
                "Invalid rule config",
                {"errors": e.errors(include_url=False)}
            ) from e

        merged = {
            "price_source": update_data.get("price_source") or PriceSource(rule.price_source),
            "grouping_key": update_data.get("grouping_key") or GroupingKey(rule.grouping_key),
            "effective_from": update_data.get("effective_from", rule.effective_from),
            "effective_to": update_data.get("effective_to", rule.effective_to),
        }
        try:
            check_rule_settings(
                merged["price_source"], merged["grouping_key"], config,
                merged["effective_from"], merged["effective_to"]
            )
        except ValueError as e:
            raise BillingValidationError(str(e)) from e
        self._check_formula(config)

        for field, value in update_data.items():
            setattr(rule, field, getattr(value, "value", value))
        rule.config = dump_rule_config(config)
        rule.updated_at = datetime.now(timezone.utc)

        await self.db.commit()
        await self.db.refresh(rule)
        logger.info(f"Updated billing rule {rule.id}")
        return rule

    async def delete_rule(self, rule_id: uuid.UUID) -> bool:
        """Delete a billing rule. Lines it produced keep their values."""
        rule = await self.get_rule(rule_id)
        if not rule:
            return False

        await self.db.delete(rule)
        await self.db.commit()
        logger.info(f"Deleted billing rule {rule_id}")
        return True

    # ========================================================================
    # MASTER BILLING RULES
    # ========================================================================

    async def _deactivate_other_masters(self, project_id: uuid.UUID, keep_id: Optional[uuid.UUID]) -> None:
        """Only one master template per project stays active."""
        stmt = update(MasterBillingRule).where(
            MasterBillingRule.project_id == project_id,
            MasterBillingRule.is_active == True,  # noqa: E712
        )
        if keep_id is not None:
            stmt = stmt.where(MasterBillingRule.id != keep_id)
        await self.db.execute(stmt.values(is_active=False))

    async def create_master_rule(self, data: MasterBillingRuleCreate) -> MasterBillingRule:
        """Create a master template; an active one replaces the previous active template."""
        await self._ensure_project(data.project_id)

        if data.is_active:
            await self._deactivate_other_masters(data.project_id, None)

        master = MasterBillingRule(
            project_id=data.project_id,
            description=data.description,
            items=[item.model_dump(mode="json") for item in data.items],
            is_active=data.is_active,
        )
        self.db.add(master)
        await self.db.commit()
        await self.db.refresh(master)

        logger.info(f"Created master billing rule {master.id} with {len(master.items)} items")
        return master

    async def get_master_rule(self, master_id: uuid.UUID) -> Optional[MasterBillingRule]:
        """Get master billing rule by ID."""
        return await self.db.get(MasterBillingRule, master_id)

    async def list_master_rules(
        self,
        project_id: Optional[uuid.UUID] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[MasterBillingRule], int]:
        """List master billing rules."""
        query = select(MasterBillingRule)

        if project_id:
            query = query.where(MasterBillingRule.project_id == project_id)
        if is_active is not None:
            query = query.where(MasterBillingRule.is_active == is_active)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(MasterBillingRule.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def update_master_rule(
        self,
        master_id: uuid.UUID,
        data: MasterBillingRuleUpdate,
    ) -> Optional[MasterBillingRule]:
        """Update a master billing rule."""
        master = await self.get_master_rule(master_id)
        if not master:
            return None

        if data.description is not None:
            master.description = data.description
        if data.items is not None:
            master.items = [item.model_dump(mode="json") for item in data.items]
        if data.is_active is not None:
            if data.is_active:
                await self._deactivate_other_masters(master.project_id, master.id)
            master.is_active = data.is_active
        master.updated_at = datetime.now(timezone.utc)

        await self.db.commit()
        await self.db.refresh(master)
        return master

    async def delete_master_rule(self, master_id: uuid.UUID) -> bool:
        master = await self.get_master_rule(master_id)
        if not master:
            return False

        await self.db.delete(master)
        await self.db.commit()
        logger.info(f"Deleted master billing rule {master_id}")
        return True
