"""
Price List Models.

Lookup tables for rules with price_source = price_list. An entry is keyed by
item_key (part number, work type, pallet type...) and can carry several named
prices besides unit_price.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base
from billing_engine.db_types import UUIDType, JSONType, RateType


class PriceList(Base):
    """Named price list, optionally scoped to a project."""
    __tablename__ = "price_lists"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    entries: Mapped[List["PriceListEntry"]] = relationship(
        "PriceListEntry",
        back_populates="price_list",
        cascade="all, delete-orphan"
    )


class PriceListEntry(Base):
    """One priced item of a price list."""
    __tablename__ = "price_list_entries"
    __table_args__ = (
        UniqueConstraint('price_list_id', 'item_key', name='uq_price_list_entry_key'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    price_list_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("price_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    item_key: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    prices: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Additional named prices, e.g. {\"pallet_rate\": \"12.00\"}"
    )

    price_list: Mapped["PriceList"] = relationship(
        "PriceList",
        back_populates="entries"
    )
