"""
Invoice Service.

Orchestrates invoice preview and generation:
    Performance Aggregator -> Rule Matcher -> Fixed Item Generator /
    Variable Line Computer -> Price Resolver -> Invoice Assembler

Preview runs the same computation without committing anything and reports
price failures on the affected lines. Generate fails on the first price
failure and holds the per-period lock from aggregation through commit.
"""
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.config import settings
from billing_engine.core.exceptions import NoApplicableRule, ProjectNotFound
from billing_engine.core.money import currency_precision
from billing_engine.models.invoice import Invoice, InvoiceStatus, GeneratedFrom
from billing_engine.models.project import Project
from billing_engine.schemas.billing_rule import MasterItem
from billing_engine.services.invoice_assembler import InvoiceAssembler, InvoiceDraft
from billing_engine.services.performance_aggregator import PerformanceAggregator, PerformanceData
from billing_engine.services.period_lock import period_locks
from billing_engine.services.price_resolver import PriceResolver, load_price_book
from billing_engine.services.rule_matcher import RuleMatcher, MatchedRules


logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoice preview, generation and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.assembler = InvoiceAssembler(db)

    async def _get_project(self, project_id: uuid.UUID) -> Project:
        project = await self.db.get(Project, project_id)
        if not project:
            raise ProjectNotFound(f"Project {project_id} not found", {"project_id": str(project_id)})
        return project

    async def _compute(
        self,
        project: Project,
        period_start: date,
        period_end: date,
        strict: bool,
        template_items: Optional[Sequence[MasterItem]] = None,
    ) -> Tuple[MatchedRules, PerformanceData, InvoiceDraft]:
        data = await PerformanceAggregator(self.db).load(project.id, period_start, period_end)
        matched = await RuleMatcher(self.db).match(project.id, as_of=period_end)
        price_book = await load_price_book(
            self.db, (rule.config.price_list_id for rule in matched.rules)
        )

        tax_rate = project.tax_rate if project.tax_rate is not None else settings.DEFAULT_TAX_RATE
        draft = InvoiceAssembler.assemble(
            matched,
            data,
            PriceResolver(price_book),
            precision=currency_precision(project.currency, project.currency_precision),
            tax_rate=Decimal(tax_rate),
            strict=strict,
            template_items=template_items,
        )
        return matched, data, draft

    # ========================================================================
    # PREVIEW / GENERATE
    # ========================================================================

    async def preview(
        self,
        project_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> Dict[str, Any]:
        """
        Compute invoice lines without persisting anything.

        Missing rules and unresolvable prices are reported, never raised, so
        the same request always yields the same response.
        """
        project = await self._get_project(project_id)
        matched, data, draft = await self._compute(project, period_start, period_end, strict=False)

        warnings: List[str] = []
        if matched.is_empty:
            warnings.append(
                f"No active billing rule applies to project {project.code} on {period_end}"
            )
        warnings.extend(draft.warnings)
        warnings.extend(f"Line {line.line_number}: {line.error}" for line in draft.lines if line.error)

        return {
            "project": project,
            "period_start": period_start,
            "period_end": period_end,
            "invoice_lines": [line.__dict__ for line in draft.lines],
            "performance_data": data.summary(),
            "active_rules": [rule.__dict__ for rule in matched.rules],
            "warnings": warnings,
            "summary": {
                "subtotal": draft.subtotal,
                "tax_rate": draft.tax_rate,
                "tax": draft.tax,
                "total_amount": draft.total_amount,
                "line_count": len(draft.lines),
            },
        }

    async def generate(
        self,
        project_id: uuid.UUID,
        period_start: date,
        period_end: date,
        period_month: Optional[str] = None,
        items: Optional[Sequence[MasterItem]] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        """
        Generate and persist the invoice of a period.

        Raises:
            ProjectNotFound: unknown project
            DuplicatePeriod: a non-cancelled invoice already covers the period
            NoApplicableRule: no active rule and no explicit items
            PriceNotFound / FormulaError: a line could not be priced
            PersistenceError: the commit failed and was rolled back
        """
        project = await self._get_project(project_id)

        async with period_locks.hold(project.id, period_start, period_end):
            await self.assembler.ensure_period_free(project.id, period_start, period_end)

            matched, _, draft = await self._compute(
                project, period_start, period_end, strict=True, template_items=items
            )
            if matched.is_empty and not items:
                raise NoApplicableRule(
                    f"No active billing rule applies to project {project.code} on {period_end}",
                    {"project_id": str(project.id), "as_of": period_end.isoformat()}
                )

            return await self.assembler.persist(
                project,
                draft,
                period_start,
                period_end,
                period_month=period_month,
                notes=notes,
                generated_from=GeneratedFrom.MANUAL if items else GeneratedFrom.AUTO,
            )

    # ========================================================================
    # QUERIES / LIFECYCLE
    # ========================================================================

    async def get_invoice(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        return await self.assembler.get_invoice(invoice_id)

    async def list_invoices(
        self,
        project_id: Optional[uuid.UUID] = None,
        status: Optional[InvoiceStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[Invoice], int]:
        """List invoices with filters."""
        query = select(Invoice)

        if project_id:
            query = query.where(Invoice.project_id == project_id)
        if status == InvoiceStatus.OVERDUE:
            query = query.where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date < date.today()
            )
        elif status:
            query = query.where(Invoice.status == status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(Invoice.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def approve(self, invoice_id: uuid.UUID) -> Invoice:
        return await self.assembler.transition(invoice_id, "approve")

    async def send(self, invoice_id: uuid.UUID) -> Invoice:
        return await self.assembler.transition(invoice_id, "send")

    async def mark_paid(self, invoice_id: uuid.UUID, paid_date: Optional[date] = None) -> Invoice:
        return await self.assembler.transition(invoice_id, "pay", paid_date=paid_date)

    async def cancel(self, invoice_id: uuid.UUID, reason: Optional[str] = None) -> Invoice:
        return await self.assembler.transition(invoice_id, "cancel", reason=reason)
