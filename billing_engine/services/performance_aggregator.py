"""
Performance Aggregator.

Loads the operational activity (deliveries and labor logs) of a project that
is still billable for a period, and snapshots it into immutable
PerformanceRecord values the rest of the engine works on.
"""
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.models.invoice import Invoice, InvoiceStatus
from billing_engine.models.performance import (
    Delivery, LaborLog, DeliveryStatus, LaborLogStatus
)


logger = logging.getLogger(__name__)

SOURCE_DELIVERY = "delivery"
SOURCE_LABOR = "labor"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_DELIVERY_FIELDS = (
    "delivery_number", "delivery_date", "part_no", "part_name", "quantity", "unit",
    "pallet_no", "pallet_type", "pallet_count", "container_no", "container_type",
    "weight", "volume", "po_number", "so_number", "status",
)
_LABOR_FIELDS = (
    "log_number", "work_date", "work_type", "work_description", "hours",
    "labor_rate", "quantity", "quantity_unit", "worker_name", "po_number", "status",
)


def field_name(name: str) -> str:
    """Record field name for a snake_case or camelCase reference."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class PerformanceRecord:
    """Read-only snapshot of one delivery or labor log."""
    source_type: str
    id: uuid.UUID
    number: str
    event_date: date
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        """Field value by snake_case or camelCase name; None when absent."""
        if name in self.fields:
            return self.fields[name]
        if name == "date":
            return self.event_date
        return self.fields.get(field_name(name))

    def decimal(self, name: str) -> Optional[Decimal]:
        value = self.get(name)
        if value is None or value == "":
            return None
        return value if isinstance(value, Decimal) else Decimal(str(value))

    @property
    def sort_key(self) -> Tuple[date, str, str]:
        return (self.event_date, self.number, str(self.id))

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> "PerformanceRecord":
        return cls(
            source_type=SOURCE_DELIVERY,
            id=delivery.id,
            number=delivery.delivery_number,
            event_date=delivery.delivery_date,
            fields=MappingProxyType({f: getattr(delivery, f) for f in _DELIVERY_FIELDS}),
        )

    @classmethod
    def from_labor_log(cls, log: LaborLog) -> "PerformanceRecord":
        return cls(
            source_type=SOURCE_LABOR,
            id=log.id,
            number=log.log_number,
            event_date=log.work_date,
            fields=MappingProxyType({f: getattr(log, f) for f in _LABOR_FIELDS}),
        )


@dataclass(frozen=True)
class PerformanceData:
    """Billable activity of one project and period."""
    deliveries: Tuple[PerformanceRecord, ...] = ()
    labor_logs: Tuple[PerformanceRecord, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.deliveries and not self.labor_logs

    def summary(self) -> Dict[str, Any]:
        """Counts, totals and per-record digests for preview responses."""
        return {
            "delivery_count": len(self.deliveries),
            "labor_log_count": len(self.labor_logs),
            "total_delivery_quantity": sum(
                (r.decimal("quantity") or Decimal("0") for r in self.deliveries), Decimal("0")
            ),
            "total_labor_hours": sum(
                (r.decimal("hours") or Decimal("0") for r in self.labor_logs), Decimal("0")
            ),
            "deliveries": [
                {
                    "id": r.id,
                    "number": r.number,
                    "event_date": r.event_date,
                    "key": r.get("part_no") or r.get("pallet_no") or r.get("container_no"),
                    "measure": r.decimal("quantity"),
                }
                for r in self.deliveries
            ],
            "labor_logs": [
                {
                    "id": r.id,
                    "number": r.number,
                    "event_date": r.event_date,
                    "key": r.get("work_type"),
                    "measure": r.decimal("hours"),
                }
                for r in self.labor_logs
            ],
        }


class PerformanceAggregator:
    """Reads unbilled activity; never writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(
        self,
        project_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> PerformanceData:
        """
        Activity dated within [period_start, period_end], both inclusive.

        Queried as the half-open window [period_start, period_end + 1 day) so
        a record on the last day is always included. Cancelled records and
        records consumed by a live invoice are excluded.
        """
        window_end = period_end + timedelta(days=1)
        cancelled_invoices = select(Invoice.id).where(
            Invoice.status == InvoiceStatus.CANCELLED.value
        )

        delivery_query = (
            select(Delivery)
            .where(
                Delivery.project_id == project_id,
                Delivery.delivery_date >= period_start,
                Delivery.delivery_date < window_end,
                Delivery.status != DeliveryStatus.CANCELLED.value,
                or_(
                    Delivery.invoice_id.is_(None),
                    Delivery.invoice_id.in_(cancelled_invoices),
                ),
            )
            .order_by(Delivery.delivery_date, Delivery.delivery_number, Delivery.id)
        )
        labor_query = (
            select(LaborLog)
            .where(
                LaborLog.project_id == project_id,
                LaborLog.work_date >= period_start,
                LaborLog.work_date < window_end,
                LaborLog.status != LaborLogStatus.CANCELLED.value,
                or_(
                    LaborLog.invoice_id.is_(None),
                    LaborLog.invoice_id.in_(cancelled_invoices),
                ),
            )
            .order_by(LaborLog.work_date, LaborLog.log_number, LaborLog.id)
        )

        deliveries = (await self.db.execute(delivery_query)).scalars().all()
        labor_logs = (await self.db.execute(labor_query)).scalars().all()

        data = PerformanceData(
            deliveries=_sorted(PerformanceRecord.from_delivery(d) for d in deliveries),
            labor_logs=_sorted(PerformanceRecord.from_labor_log(log) for log in labor_logs),
        )
        logger.info(
            f"Loaded {len(data.deliveries)} deliveries and {len(data.labor_logs)} labor logs "
            f"for project {project_id} ({period_start} to {period_end})"
        )
        return data


def _sorted(records) -> Tuple[PerformanceRecord, ...]:
    return tuple(sorted(records, key=lambda r: r.sort_key))
