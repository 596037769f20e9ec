"""
Rule Matcher.

Finds the billing rules that apply to a project on a date and ranks them:
priority descending, then creation sequence ascending. The creation
sequence is assigned once on insert, so the ranking never depends on storage
order.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import BillingValidationError
from billing_engine.models.billing_rule import (
    ProjectBillingRule, MasterBillingRule,
    RuleType, UnitBasis, PriceSource, GroupingKey,
)
from billing_engine.schemas.billing_rule import MasterItem
from billing_engine.schemas.rule_config import RuleConfig, parse_rule_config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchedRule:
    """Immutable view of a billing rule with its config parsed."""
    id: Optional[uuid.UUID]
    rule_name: str
    description: Optional[str]
    rule_type: RuleType
    unit_basis: UnitBasis
    price_source: PriceSource
    grouping_key: GroupingKey
    config: RuleConfig
    priority: int = 0
    creation_seq: int = 0
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    @property
    def rank(self) -> Tuple[int, int]:
        return (-self.priority, self.creation_seq)

    def covers(self, day: date) -> bool:
        """Whether `day` lies in the rule's effective window (open bounds allowed)."""
        if self.effective_from and day < self.effective_from:
            return False
        if self.effective_to and day > self.effective_to:
            return False
        return True

    @classmethod
    def from_model(cls, rule: ProjectBillingRule) -> "MatchedRule":
        try:
            config = parse_rule_config(rule.rule_type, rule.config)
        except ValidationError as e:
            raise BillingValidationError(
                f"Billing rule '{rule.rule_name}' has an invalid config",
                {"rule_id": str(rule.id), "errors": e.errors(include_url=False)}
            ) from e
        return cls(
            id=rule.id,
            rule_name=rule.rule_name,
            description=rule.description,
            rule_type=RuleType(rule.rule_type),
            unit_basis=UnitBasis(rule.unit_basis),
            price_source=PriceSource(rule.price_source),
            grouping_key=GroupingKey(rule.grouping_key),
            config=config,
            priority=rule.priority,
            creation_seq=rule.creation_seq,
            effective_from=rule.effective_from,
            effective_to=rule.effective_to,
        )


@dataclass(frozen=True)
class MatchedRules:
    """Ranked rules plus the master template when a FIXED/MIXED rule needs it."""
    rules: Tuple[MatchedRule, ...]
    master_items: Optional[Tuple[MasterItem, ...]] = None

    @property
    def is_empty(self) -> bool:
        return not self.rules


def rank_rules(rules: Iterable[MatchedRule], as_of: date) -> List[MatchedRule]:
    """Rules effective on `as_of`, highest priority first, oldest first on ties."""
    return sorted((r for r in rules if r.covers(as_of)), key=lambda r: r.rank)


def needs_master_template(rules: Sequence[MatchedRule]) -> bool:
    return any(r.rule_type in (RuleType.FIXED, RuleType.MIXED) for r in rules)


class RuleMatcher:
    """Loads active rules and the active master template of a project."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def match(self, project_id: uuid.UUID, as_of: date) -> MatchedRules:
        query = select(ProjectBillingRule).where(
            ProjectBillingRule.project_id == project_id,
            ProjectBillingRule.is_active == True,  # noqa: E712
        ).order_by(
            ProjectBillingRule.priority.desc(),
            ProjectBillingRule.creation_seq.asc(),
        )
        result = await self.db.execute(query)
        ranked = rank_rules(
            (MatchedRule.from_model(r) for r in result.scalars().all()),
            as_of
        )

        master_items = None
        if needs_master_template(ranked):
            master_items = await self.get_master_items(project_id)

        logger.debug(
            f"Matched {len(ranked)} rules for project {project_id} as of {as_of}"
        )
        return MatchedRules(rules=tuple(ranked), master_items=master_items)

    async def get_master_items(self, project_id: uuid.UUID) -> Optional[Tuple[MasterItem, ...]]:
        """Items of the project's active master template; None when there is none."""
        query = select(MasterBillingRule).where(
            MasterBillingRule.project_id == project_id,
            MasterBillingRule.is_active == True,  # noqa: E712
        ).order_by(MasterBillingRule.updated_at.desc())
        result = await self.db.execute(query)
        master = result.scalars().first()
        if master is None:
            return None
        return tuple(MasterItem.model_validate(item) for item in master.items or [])
