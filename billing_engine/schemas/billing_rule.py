"""
Billing Rule Schemas.

Pydantic schemas for project billing rules and master billing templates.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Any, Dict
from uuid import UUID

from pydantic import Field, model_validator

from billing_engine.models.billing_rule import (
    RuleType, UnitBasis, PriceSource, GroupingKey
)
from billing_engine.schemas.base import (
    BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
)
from billing_engine.schemas.rule_config import RuleConfig, parse_rule_config


# ============================================================================
# PROJECT BILLING RULE SCHEMAS
# ============================================================================

def _coerce_config(data: Any) -> Any:
    """Default config.kind to ruleType so clients can omit it."""
    if not isinstance(data, dict):
        return data
    rule_type = data.get("ruleType", data.get("rule_type"))
    config = data.get("config")
    if rule_type is None:
        return data
    rule_type = getattr(rule_type, "value", rule_type)
    if config is None:
        config = {}
    if isinstance(config, dict):
        kind = config.get("kind", rule_type)
        if kind != rule_type:
            raise ValueError(f"config.kind '{kind}' does not match ruleType '{rule_type}'")
        data = {**data, "config": {**config, "kind": rule_type}}
    return data


def check_rule_settings(
    price_source: PriceSource,
    grouping_key: GroupingKey,
    config: RuleConfig,
    effective_from: Optional[date],
    effective_to: Optional[date],
) -> None:
    """
    Cross-field rule checks shared by create and update.

    Raises:
        ValueError: describing the first inconsistency
    """
    if effective_from and effective_to and effective_to < effective_from:
        raise ValueError("effectiveTo must not be before effectiveFrom")
    if price_source == PriceSource.PRICE_LIST and config.price_list_id is None:
        raise ValueError("price_list rules require config.priceListId")
    if price_source == PriceSource.COMPOSITE_RATE and not config.formula:
        raise ValueError("composite_rate rules require config.formula")
    if grouping_key == GroupingKey.MIXED and not config.group_formula:
        raise ValueError("groupingKey 'mixed' requires config.groupFormula")


class BillingRuleBase(BaseCreateSchema):
    """Base schema for billing rule."""
    rule_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    rule_type: RuleType
    unit_basis: UnitBasis
    price_source: PriceSource
    grouping_key: GroupingKey = GroupingKey.NONE
    priority: int = 0
    is_active: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None


class BillingRuleCreate(BillingRuleBase):
    """Schema for creating a billing rule."""
    project_id: UUID
    config: RuleConfig

    @model_validator(mode="before")
    @classmethod
    def default_config_kind(cls, data):
        return _coerce_config(data)

    @model_validator(mode="after")
    def check_consistency(self):
        check_rule_settings(
            self.price_source, self.grouping_key, self.config,
            self.effective_from, self.effective_to
        )
        return self


class BillingRuleUpdate(BaseUpdateSchema):
    """
    Schema for updating a billing rule.

    rule_type is fixed at creation; a new config replaces the old one whole.
    """
    rule_name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    unit_basis: Optional[UnitBasis] = None
    price_source: Optional[PriceSource] = None
    grouping_key: Optional[GroupingKey] = None
    config: Optional[Dict[str, Any]] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None


class BillingRuleResponse(BaseResponseSchema):
    """Schema for billing rule response."""
    id: UUID
    project_id: UUID
    rule_name: str
    description: Optional[str] = None
    rule_type: RuleType
    unit_basis: UnitBasis
    price_source: PriceSource
    grouping_key: GroupingKey
    config: RuleConfig
    priority: int
    creation_seq: int
    is_active: bool
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def parse_stored_config(cls, data):
        # ORM rows carry the config as a plain dict
        if hasattr(data, "config") and hasattr(data, "rule_type"):
            return {
                name: getattr(data, name)
                for name in cls.model_fields
                if name != "config"
            } | {"config": parse_rule_config(data.rule_type, data.config)}
        return data


class ActiveRuleSummary(BaseResponseSchema):
    """Compact rule listing used by invoice previews."""
    id: UUID
    rule_name: str
    rule_type: RuleType
    price_source: PriceSource
    grouping_key: GroupingKey
    priority: int
    creation_seq: int


# ============================================================================
# MASTER BILLING RULE SCHEMAS
# ============================================================================

class MasterItem(BaseCreateSchema):
    """
    Line template of a master billing rule.

    Fixed items bill their unit_price once; other items bill
    quantity x unit_price.
    """
    is_fixed: bool = False
    item_name: str = Field(..., min_length=1, max_length=300)
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit: str = Field(default="EA", max_length=20)
    unit_price: Decimal
    amount: Optional[Decimal] = None

    @model_validator(mode="after")
    def fill_amount(self):
        if self.amount is None:
            self.amount = self.unit_price if self.is_fixed else self.quantity * self.unit_price
        return self


class MasterBillingRuleBase(BaseCreateSchema):
    description: Optional[str] = None
    items: List[MasterItem] = Field(default_factory=list)
    is_active: bool = True


class MasterBillingRuleCreate(MasterBillingRuleBase):
    """Schema for creating a master billing rule."""
    project_id: UUID


class MasterBillingRuleUpdate(BaseUpdateSchema):
    """Schema for updating a master billing rule."""
    description: Optional[str] = None
    items: Optional[List[MasterItem]] = None
    is_active: Optional[bool] = None


class MasterBillingRuleResponse(BaseResponseSchema):
    """Schema for master billing rule response."""
    id: UUID
    project_id: UUID
    description: Optional[str] = None
    items: List[MasterItem]
    is_active: bool
    created_at: datetime
    updated_at: datetime
