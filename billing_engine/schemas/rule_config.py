"""
Rule configuration payloads.

A rule's config is a tagged union keyed by `kind`, which always equals the
rule's rule_type. It is stored as JSON on the rule row and parsed back into
these models by the engine, so unknown keys are dropped and numeric values
are Decimal on both sides.
"""
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import Field, TypeAdapter

from billing_engine.schemas.base import BaseCreateSchema


class FilterOperator(str, Enum):
    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"


class RuleFilter(BaseCreateSchema):
    """Record predicate: `field operator value`."""
    field: str = Field(..., min_length=1, max_length=50)
    operator: FilterOperator
    value: Any


class RuleItem(BaseCreateSchema):
    """Flat line carried by a FIXED or MIXED rule."""
    description: str = Field(..., min_length=1, max_length=300)
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit: str = Field(default="Month", max_length=20)
    unit_price: Decimal


# ============================================================================
# TAGGED UNION
# ============================================================================

class _RuleConfigBase(BaseCreateSchema):
    unit_price: Optional[Decimal] = None
    price_list_id: Optional[UUID] = None
    price_field: str = Field(default="unit_price", max_length=50)
    price_key_field: Optional[str] = Field(None, max_length=50)
    group_by: Optional[List[str]] = None
    filters: List[RuleFilter] = Field(default_factory=list)
    # composite_rate unit price
    formula: Optional[str] = Field(None, max_length=500)
    # groupingKey=mixed bucket key, evaluated per record
    group_formula: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class EAConfig(_RuleConfigBase):
    kind: Literal["EA"] = "EA"


class PalletConfig(_RuleConfigBase):
    kind: Literal["PALLET"] = "PALLET"


class LaborConfig(_RuleConfigBase):
    kind: Literal["LABOR"] = "LABOR"
    fallback_rate: Optional[Decimal] = None


class VolumeConfig(_RuleConfigBase):
    kind: Literal["VOLUME"] = "VOLUME"
    # Defaults from unit_basis: KG bills weight, anything else volume
    measure_field: Optional[Literal["volume", "weight"]] = None


class ContainerConfig(_RuleConfigBase):
    kind: Literal["CONTAINER"] = "CONTAINER"


class FixedConfig(_RuleConfigBase):
    kind: Literal["FIXED"] = "FIXED"
    items: List[RuleItem] = Field(default_factory=list)


MixedComponent = Literal["EA", "PALLET", "LABOR", "VOLUME", "CONTAINER"]


class MixedConfig(_RuleConfigBase):
    kind: Literal["MIXED"] = "MIXED"
    components: List[MixedComponent] = Field(
        default_factory=lambda: ["EA", "LABOR", "PALLET"]
    )
    include_master_items: bool = True
    items: List[RuleItem] = Field(default_factory=list)


RuleConfig = Annotated[
    Union[
        EAConfig, PalletConfig, LaborConfig, VolumeConfig,
        ContainerConfig, FixedConfig, MixedConfig,
    ],
    Field(discriminator="kind"),
]

_rule_config_adapter = TypeAdapter(RuleConfig)


def parse_rule_config(rule_type: str, raw: Optional[Dict[str, Any]]) -> RuleConfig:
    """
    Validate a stored or submitted config payload for a rule type.

    `kind` defaults to the rule type; a conflicting `kind` is rejected by the
    caller (see BillingRuleCreate).
    """
    data = dict(raw or {})
    data.setdefault("kind", rule_type)
    return _rule_config_adapter.validate_python(data)


def dump_rule_config(config: RuleConfig) -> Dict[str, Any]:
    """JSON-safe dict for the rule's config column."""
    return config.model_dump(mode="json", exclude_none=True)
