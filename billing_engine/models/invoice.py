"""
Invoice Models.

- Invoice: generated for one project and one closed billing period
- InvoiceItem: computed line; frozen once written
"""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String, DateTime, ForeignKey, Integer, Text, Numeric, Date, Index,
    UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base
from billing_engine.db_types import UUIDType, JSONType, MoneyType, RateType, QuantityType

if TYPE_CHECKING:
    from billing_engine.models.project import Project


class InvoiceStatus(str, Enum):
    """Stored invoice status. OVERDUE is derived, never stored."""
    DRAFT = "draft"
    APPROVED = "approved"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class GeneratedFrom(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class Invoice(Base):
    """Invoice for a project billing period."""
    __tablename__ = "invoices"
    __table_args__ = (
        # A non-cancelled invoice holds the period; cancel clears the key
        UniqueConstraint('project_id', 'active_period_key', name='uq_invoice_active_period'),
        UniqueConstraint('project_id', 'sequence_number', name='uq_invoice_project_sequence'),
        Index('ix_invoices_project_period', 'project_id', 'period_month'),
        Index('ix_invoices_status', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Invoice Identity
    invoice_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
        index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False
    )

    # References
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    po_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Billing Period
    period_month: Mapped[str] = mapped_column(String(7), nullable=False, comment="YYYY-MM")
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    active_period_key: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        comment="period_start:period_end while not cancelled"
    )

    # Invoice Dates
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    tax: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    currency_precision: Mapped[int] = mapped_column(Integer, default=2)

    generated_from: Mapped[str] = mapped_column(String(10), default=GeneratedFrom.AUTO.value)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Status timestamps
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    # Relationships
    project: Mapped["Project"] = relationship("Project")
    line_items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.line_number"
    )

    @property
    def display_status(self) -> str:
        """Status as shown to users; a sent invoice past due reads as overdue."""
        if self.status == InvoiceStatus.SENT.value and self.due_date < date.today():
            return InvoiceStatus.OVERDUE.value
        return self.status


class InvoiceItem(Base):
    """Computed invoice line."""
    __tablename__ = "invoice_items"
    __table_args__ = (
        UniqueConstraint('invoice_id', 'line_number', name='uq_invoice_item_line'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Origin (NULL rule for template lines)
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("project_billing_rules.id", ondelete="SET NULL"),
        nullable=True
    )
    rule_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    description: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(RateType, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    grouping_key: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    grouping_value: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    source_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    source_ids: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    invoice: Mapped["Invoice"] = relationship(
        "Invoice",
        back_populates="line_items"
    )
