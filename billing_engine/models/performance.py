"""
Performance (operational activity) Models.

Deliveries and labor logs are recorded by operations and read by the
billing engine. Once a record is billed, invoice_id links it to the invoice
that consumed it.
"""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, DateTime, ForeignKey, Text, Numeric, Date, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base
from billing_engine.db_types import UUIDType, QuantityType, RateType


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class LaborLogStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Delivery(Base):
    """Shipment / delivery record."""
    __tablename__ = "deliveries"
    __table_args__ = (
        Index('ix_deliveries_project_date', 'project_id', 'delivery_date'),
        Index('ix_deliveries_part_no', 'part_no'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    delivery_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Part
    part_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    part_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String(20), default="EA")

    # Pallet
    pallet_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pallet_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pallet_count: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True)

    # Container
    container_no: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    container_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Measures
    weight: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True, comment="KG")
    volume: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True, comment="CBM")

    po_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    so_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=DeliveryStatus.PENDING.value)

    # Invoice Reference
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class LaborLog(Base):
    """Labor time entry."""
    __tablename__ = "labor_logs"
    __table_args__ = (
        Index('ix_labor_logs_project_date', 'project_id', 'work_date'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    log_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    work_type: Mapped[str] = mapped_column(String(50), nullable=False)
    work_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    labor_rate: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True)
    quantity_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    worker_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    po_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=LaborLogStatus.COMPLETED.value)

    # Invoice Reference
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
