"""
Invoice Assembler.

Merges fixed and variable lines in rule-priority order, numbers them,
computes totals, and persists an invoice atomically together with the
attribution of the records it bills. Also owns the invoice state machine.

State machine:
    draft --approve--> approved --send--> sent --pay--> paid
    draft | approved | sent --cancel--> cancelled
"overdue" is derived from sent + due_date and never stored.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing_engine.config import settings
from billing_engine.core.exceptions import (
    DuplicatePeriod, InvalidStatusTransition, InvoiceNotFound, PersistenceError
)
from billing_engine.core.money import round_amount
from billing_engine.models.billing_rule import RuleType, VARIABLE_RULE_TYPES
from billing_engine.models.billing_sequence import SequenceScope
from billing_engine.models.invoice import Invoice, InvoiceItem, InvoiceStatus, GeneratedFrom
from billing_engine.models.performance import Delivery, LaborLog
from billing_engine.models.project import Project
from billing_engine.schemas.billing_rule import MasterItem
from billing_engine.services.billing_sequence_service import BillingSequenceService
from billing_engine.services.fixed_item_generator import FixedItemGenerator
from billing_engine.services.line_computer import ClaimSet, InvoiceLineData, LineComputer
from billing_engine.services.performance_aggregator import (
    PerformanceData, SOURCE_DELIVERY, SOURCE_LABOR
)
from billing_engine.services.price_resolver import PriceResolver
from billing_engine.services.rule_matcher import MatchedRules


logger = logging.getLogger(__name__)


@dataclass
class InvoiceDraft:
    """Fully computed invoice that has not been persisted."""
    lines: List[InvoiceLineData]
    subtotal: Decimal
    tax_rate: Decimal
    tax: Decimal
    total_amount: Decimal
    precision: int
    warnings: List[str] = field(default_factory=list)


def compute_totals(
    lines: Sequence[InvoiceLineData],
    tax_rate: Decimal,
    precision: int,
) -> Tuple[Decimal, Decimal, Decimal]:
    """(subtotal, tax, total). Line amounts are already rounded."""
    subtotal = round_amount(sum((line.amount for line in lines), Decimal("0")), precision)
    tax = round_amount(subtotal * tax_rate, precision)
    return subtotal, tax, subtotal + tax


def period_key(period_start: date, period_end: date) -> str:
    return f"{period_start.isoformat()}:{period_end.isoformat()}"


def format_invoice_number(project_code: str, sequence_number: int) -> str:
    """INV-{PROJECT_CODE}-{NNNNN}"""
    return (
        f"{settings.INVOICE_NUMBER_PREFIX}-{project_code.upper()}-"
        f"{str(sequence_number).zfill(settings.INVOICE_NUMBER_PADDING)}"
    )


# (allowed from-states, target state) per transition
TRANSITIONS: Dict[str, Tuple[FrozenSet[str], InvoiceStatus]] = {
    "approve": (frozenset({InvoiceStatus.DRAFT.value}), InvoiceStatus.APPROVED),
    "send": (frozenset({InvoiceStatus.APPROVED.value}), InvoiceStatus.SENT),
    "pay": (frozenset({InvoiceStatus.SENT.value}), InvoiceStatus.PAID),
    "cancel": (
        frozenset({
            InvoiceStatus.DRAFT.value, InvoiceStatus.APPROVED.value, InvoiceStatus.SENT.value
        }),
        InvoiceStatus.CANCELLED,
    ),
}


class InvoiceAssembler:
    """Builds drafts and persists invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # ASSEMBLY (no I/O)
    # ========================================================================

    @staticmethod
    def assemble(
        matched: MatchedRules,
        data: PerformanceData,
        resolver: PriceResolver,
        precision: int,
        tax_rate: Decimal,
        strict: bool = True,
        template_items: Optional[Sequence[MasterItem]] = None,
    ) -> InvoiceDraft:
        """
        Compute every line of an invoice.

        Rules run in rank order. Each record is billed by the first rule that
        claims it, and the master template is billed at most once: by
        `template_items` when given, otherwise by the first FIXED/MIXED rule
        that uses it.
        """
        fixed = FixedItemGenerator(precision, strict)
        computer = LineComputer(resolver, precision, strict)
        claimed: ClaimSet = set()
        warnings: List[str] = []
        lines: List[InvoiceLineData] = []

        available_master = matched.master_items
        template_billed = False
        if template_items:
            lines.extend(fixed.from_master(template_items))
            available_master = None
            template_billed = True

        for rule in matched.rules:
            if rule.rule_type in VARIABLE_RULE_TYPES:
                rule_lines = computer.compute(rule, data, claimed)
            else:
                rule_lines = fixed.generate(rule, available_master, template_billed)
                uses_master = rule.rule_type == RuleType.FIXED or rule.config.include_master_items
                if available_master and uses_master:
                    available_master = None
                    template_billed = True
                if rule.rule_type == RuleType.MIXED:
                    for component in rule.config.components:
                        rule_lines.extend(computer.compute(rule, data, claimed, RuleType(component)))

            if not rule_lines:
                warnings.append(f"Rule '{rule.rule_name}' produced no lines for this period")
            lines.extend(rule_lines)

        for number, line in enumerate(lines, start=1):
            line.line_number = number

        subtotal, tax, total = compute_totals(lines, tax_rate, precision)
        return InvoiceDraft(
            lines=lines,
            subtotal=subtotal,
            tax_rate=tax_rate,
            tax=tax,
            total_amount=total,
            precision=precision,
            warnings=warnings,
        )

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    async def get_invoice(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        """Get invoice with its lines."""
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.line_items))
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure_period_free(
        self,
        project_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> None:
        """
        Raises:
            DuplicatePeriod: a non-cancelled invoice overlaps the period
        """
        result = await self.db.execute(
            select(Invoice.invoice_number).where(
                Invoice.project_id == project_id,
                Invoice.status != InvoiceStatus.CANCELLED.value,
                Invoice.period_start <= period_end,
                Invoice.period_end >= period_start,
            )
        )
        existing = result.scalars().first()
        if existing:
            raise DuplicatePeriod(
                f"Invoice {existing} already covers {period_start} to {period_end}",
                {"invoice_number": existing, "project_id": str(project_id)}
            )

    async def _generate_invoice_number(self, project: Project) -> Tuple[int, str]:
        """Next number of the project's invoice sequence, row-locked."""
        sequence_service = BillingSequenceService(self.db)
        number = await sequence_service.next_number(SequenceScope.INVOICE, str(project.id))
        return number, format_invoice_number(project.code, number)

    async def persist(
        self,
        project: Project,
        draft: InvoiceDraft,
        period_start: date,
        period_end: date,
        period_month: Optional[str] = None,
        notes: Optional[str] = None,
        generated_from: GeneratedFrom = GeneratedFrom.AUTO,
    ) -> Invoice:
        """
        Write invoice, lines and record attribution in one transaction.

        Raises:
            DuplicatePeriod: the period was claimed concurrently
            PersistenceError: any other database failure; nothing is written
        """
        # rollback expires loaded instances; keep what the error paths report
        project_id, project_code = project.id, project.code
        try:
            sequence_number, invoice_number = await self._generate_invoice_number(project)
            invoice_date = date.today()

            invoice = Invoice(
                invoice_number=invoice_number,
                sequence_number=sequence_number,
                status=InvoiceStatus.DRAFT.value,
                project_id=project.id,
                customer_id=project.customer_id,
                customer_name=project.customer_name,
                po_number=project.po_number,
                period_month=period_month or period_start.strftime("%Y-%m"),
                period_start=period_start,
                period_end=period_end,
                active_period_key=period_key(period_start, period_end),
                invoice_date=invoice_date,
                due_date=period_end + timedelta(days=project.payment_terms_days),
                subtotal=draft.subtotal,
                tax_rate=draft.tax_rate,
                tax=draft.tax,
                total_amount=draft.total_amount,
                currency=project.currency,
                currency_precision=draft.precision,
                generated_from=generated_from.value,
                notes=notes,
            )
            invoice.line_items = [
                InvoiceItem(
                    line_number=line.line_number,
                    rule_id=line.rule_id,
                    rule_type=line.rule_type,
                    description=line.description,
                    quantity=line.quantity,
                    unit=line.unit,
                    unit_price=line.unit_price,
                    amount=line.amount,
                    grouping_key=line.grouping_key,
                    grouping_value=line.grouping_value,
                    source_type=line.source_type,
                    source_ids=list(line.source_ids),
                )
                for line in draft.lines
            ]
            self.db.add(invoice)
            await self.db.flush()

            await self._attribute_records(invoice.id, draft.lines)
            await self.db.commit()
        except (DuplicatePeriod, PersistenceError):
            await self.db.rollback()
            logger.warning(
                f"Invoice for project {project_code} {period_start}..{period_end} rolled back"
            )
            raise
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                f"Invoice for project {project_code} {period_start}..{period_end} "
                f"rejected by period constraint: {e.orig}"
            )
            raise DuplicatePeriod(
                f"An invoice for {period_start} to {period_end} already exists",
                {"project_id": str(project_id)}
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to persist invoice for project {project_code}: {e}")
            raise PersistenceError("Failed to persist invoice; all changes rolled back") from e

        logger.info(
            f"Generated invoice {invoice_number} for project {project.code}: "
            f"{len(draft.lines)} lines, total {draft.total_amount} {project.currency}"
        )
        return await self.get_invoice(invoice.id)

    async def _attribute_records(self, invoice_id: uuid.UUID, lines: Sequence[InvoiceLineData]) -> None:
        """
        Link every billed record to the invoice.

        Raises:
            DuplicatePeriod: a record was attributed to another invoice after it was read
        """
        delivery_ids = set()
        labor_ids = set()
        for line in lines:
            target = {SOURCE_DELIVERY: delivery_ids, SOURCE_LABOR: labor_ids}.get(line.source_type)
            if target is not None:
                target.update(uuid.UUID(i) for i in line.source_ids)

        for model, ids in ((Delivery, delivery_ids), (LaborLog, labor_ids)):
            if not ids:
                continue
            result = await self.db.execute(
                update(model)
                .where(and_(model.id.in_(ids), model.invoice_id.is_(None)))
                .values(invoice_id=invoice_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(ids):
                raise DuplicatePeriod(
                    f"{len(ids) - result.rowcount} {model.__tablename__} record(s) were billed "
                    f"by another invoice while this one was being generated",
                    {"source_table": model.__tablename__}
                )

    # ========================================================================
    # STATE MACHINE
    # ========================================================================

    async def transition(
        self,
        invoice_id: uuid.UUID,
        action: str,
        reason: Optional[str] = None,
        paid_date: Optional[date] = None,
    ) -> Invoice:
        """
        Apply a status transition.

        Raises:
            InvoiceNotFound: unknown invoice
            InvalidStatusTransition: the action is not allowed from the current status
        """
        invoice = await self.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")

        allowed_from, target = TRANSITIONS[action]
        if invoice.status not in allowed_from:
            raise InvalidStatusTransition(
                f"Cannot {action} invoice {invoice.invoice_number} in status '{invoice.status}'",
                {"status": invoice.status, "action": action}
            )

        now = datetime.now(timezone.utc)
        previous = invoice.status
        invoice.status = target.value
        invoice.updated_at = now

        if target == InvoiceStatus.APPROVED:
            invoice.approved_at = now
        elif target == InvoiceStatus.SENT:
            invoice.sent_at = now
        elif target == InvoiceStatus.PAID:
            invoice.paid_date = paid_date or date.today()
        elif target == InvoiceStatus.CANCELLED:
            invoice.cancelled_at = now
            invoice.cancel_reason = reason
            # Release the period and the billed records for re-generation
            invoice.active_period_key = None
            await self.db.execute(
                update(Delivery).where(Delivery.invoice_id == invoice.id).values(invoice_id=None)
            )
            await self.db.execute(
                update(LaborLog).where(LaborLog.invoice_id == invoice.id).values(invoice_id=None)
            )

        await self.db.commit()
        logger.info(f"Invoice {invoice.invoice_number}: {previous} -> {invoice.status}")
        return await self.get_invoice(invoice_id)
