"""
Billing Sequence Model for Atomic Number Generation.

One counter row per (scope, key):
• INVOICE / <project id>  → per-project invoice numbers
• RULE / global           → billing rule creation sequence

Rows are read with SELECT FOR UPDATE so concurrent writers serialize on the
counter and numbers are never reused.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base
from billing_engine.db_types import UUIDType


class SequenceScope(str, Enum):
    INVOICE = "INVOICE"
    RULE = "RULE"


class BillingSequence(Base):
    """Monotonic counter."""
    __tablename__ = "billing_sequences"
    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_billing_sequence_scope_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def take_next(self) -> int:
        """
        Increment and return the counter.

        NOTE: does NOT commit. The caller owns the transaction.
        """
        self.current_number += 1
        return self.current_number
