"""
Billing Rule Models.

- ProjectBillingRule: how a project's operational activity is priced
- MasterBillingRule: the project's template of flat line items
"""
import uuid
from datetime import datetime, timezone, date
from enum import Enum
from typing import TYPE_CHECKING, Optional, List, Dict, Any

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, Text, Date, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base
from billing_engine.db_types import UUIDType, JSONType

if TYPE_CHECKING:
    from billing_engine.models.project import Project


# ============================================================================
# ENUMS
# ============================================================================

class RuleType(str, Enum):
    """Billing strategies."""
    EA = "EA"                   # per part unit
    PALLET = "PALLET"           # per pallet
    LABOR = "LABOR"             # per labor hour
    FIXED = "FIXED"             # flat monthly fee
    MIXED = "MIXED"             # fixed template + variable components
    VOLUME = "VOLUME"           # per CBM / KG
    CONTAINER = "CONTAINER"     # per container


VARIABLE_RULE_TYPES = frozenset({
    RuleType.EA, RuleType.PALLET, RuleType.LABOR, RuleType.VOLUME, RuleType.CONTAINER,
})


class UnitBasis(str, Enum):
    """Unit printed on generated lines."""
    EA = "EA"
    PALLET = "Pallet"
    HOUR = "Hour"
    MONTH = "Month"
    CONTAINER = "Container"
    KG = "KG"
    CBM = "CBM"
    MIXED = "Mixed"


class PriceSource(str, Enum):
    """Where a rule's unit price comes from."""
    FIXED_PRICE = "fixed_price"
    PRICE_LIST = "price_list"
    LABOR_RATE = "labor_rate"
    PALLET_RATE = "pallet_rate"
    CONTRACT_RATE = "contract_rate"
    COMPOSITE_RATE = "composite_rate"


class GroupingKey(str, Enum):
    """How matched records are partitioned into lines."""
    PART_NO = "part_no"
    PALLET_NO = "pallet_no"
    DATE = "date"
    WORK_TYPE = "work_type"
    NONE = "none"
    MIXED = "mixed"


# ============================================================================
# MODELS
# ============================================================================

class ProjectBillingRule(Base):
    """
    Billing rule for a project.

    The config payload is stored as JSON and validated against the tagged
    union in billing_engine.schemas.rule_config.
    """
    __tablename__ = "project_billing_rules"
    __table_args__ = (
        Index('ix_project_billing_rules_active', 'project_id', 'is_active', 'priority'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    rule_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rule_type: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_basis: Mapped[str] = mapped_column(String(20), nullable=False)
    price_source: Mapped[str] = mapped_column(String(30), nullable=False)
    grouping_key: Mapped[str] = mapped_column(String(20), nullable=False)

    config: Mapped[Dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict
    )

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    creation_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        comment="Immutable tie-breaker for equal priorities"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    project: Mapped["Project"] = relationship("Project")


class MasterBillingRule(Base):
    """
    Fixed-billing template for a project.

    items: ordered list of {is_fixed, item_name, quantity, unit, unit_price, amount}.
    Only one template per project is active at a time.
    """
    __tablename__ = "master_billing_rules"
    __table_args__ = (
        Index('ix_master_billing_rules_active', 'project_id', 'is_active'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    project: Mapped["Project"] = relationship("Project")
