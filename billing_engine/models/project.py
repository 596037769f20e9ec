"""
Project Model.

A project is the billing unit: rules, master templates, performance records
and invoices all hang off a project. It also carries the customer and the
currency / tax settings the invoice assembler reads.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base
from billing_engine.db_types import UUIDType


class Project(Base):
    """Customer project billed by the rule engine."""
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Customer
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True
    )
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    po_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Billing settings
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    currency_precision: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Overrides the precision derived from the currency code"
    )
    tax_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 4),
        nullable=True,
        comment="Fraction, e.g. 0.1000 for 10%; NULL uses the default"
    )
    payment_terms_days: Mapped[int] = mapped_column(Integer, default=30)

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
