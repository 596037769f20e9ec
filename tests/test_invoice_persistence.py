"""
Invoice persistence under database failures and concurrent generation.

These tests use a SQLite file instead of the shared in-memory database so
every session holds its own connection and transactions interleave the way
they do against a real server.
"""
import asyncio
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billing_engine.core.exceptions import DuplicatePeriod, PersistenceError
from billing_engine.database import Base, custom_json_dumps
from billing_engine.models.billing_sequence import BillingSequence, SequenceScope
from billing_engine.models.invoice import Invoice
from billing_engine.models.performance import Delivery
from billing_engine.schemas.billing_rule import BillingRuleCreate
from billing_engine.schemas.project import ProjectCreate
from billing_engine.services.billing_rule_service import BillingRuleService
from billing_engine.services.billing_sequence_service import BillingSequenceService
from billing_engine.services.invoice_assembler import InvoiceAssembler, period_key
from billing_engine.services.invoice_service import InvoiceService
from billing_engine.services.project_service import ProjectService


JAN_START, JAN_END = date(2024, 1, 1), date(2024, 1, 31)
MID_START, MID_END = date(2024, 1, 15), date(2024, 2, 15)


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


async def seed_project(session_factory):
    """One project billing EA at 3.00 and one delivery of 10 units on 2024-01-20."""
    async with session_factory() as session:
        project = await ProjectService(session).create_project(
            ProjectCreate(code="PRJ001", name="Project 1", currency="USD", tax_rate=Decimal("0.10"))
        )
        await BillingRuleService(session).create_rule(
            BillingRuleCreate(
                project_id=project.id,
                rule_name="Per unit",
                rule_type="EA",
                unit_basis="EA",
                price_source="fixed_price",
                config={"unitPrice": "3"},
            )
        )
        delivery = Delivery(
            project_id=project.id,
            delivery_number="DLV-00001",
            delivery_date=date(2024, 1, 20),
            part_no="A1",
            quantity=Decimal("10"),
        )
        session.add(delivery)
        await session.commit()
        return project.id, delivery.id


async def invoice_numbers(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Invoice.invoice_number).order_by(Invoice.invoice_number))
        return list(result.scalars().all())


async def billed_to(session_factory, delivery_id):
    async with session_factory() as session:
        return await session.scalar(select(Delivery.invoice_id).where(Delivery.id == delivery_id))


async def invoice_counter(session_factory, project_id):
    async with session_factory() as session:
        return await session.scalar(
            select(BillingSequence.current_number).where(
                BillingSequence.scope == SequenceScope.INVOICE.value,
                BillingSequence.key == str(project_id),
            )
        )


# ============================================================================
# INVOICE SEQUENCE
# ============================================================================

async def test_project_creation_seeds_invoice_sequence(file_sessions):
    project_id, _ = await seed_project(file_sessions)

    assert await invoice_counter(file_sessions, project_id) == 0


async def test_creating_existing_sequence_is_persistence_error(file_sessions):
    project_id, _ = await seed_project(file_sessions)

    async with file_sessions() as session:
        with pytest.raises(PersistenceError) as exc_info:
            await BillingSequenceService(session).create_sequence(SequenceScope.INVOICE, str(project_id))
        await session.rollback()

    assert exc_info.value.details == {"scope": "INVOICE", "key": str(project_id)}
    assert await invoice_counter(file_sessions, project_id) == 0


# ============================================================================
# FAILED COMMITS
# ============================================================================

async def test_period_constraint_conflict_is_duplicate_period(file_sessions):
    project_id, delivery_id = await seed_project(file_sessions)

    async with file_sessions() as session:
        service = InvoiceService(session)
        project = await service._get_project(project_id)
        _, _, draft = await service._compute(project, JAN_START, JAN_END, strict=True)

        # another writer claims the period after the overlap check
        async with file_sessions() as other:
            other.add(Invoice(
                invoice_number="INV-OTHER-00001",
                sequence_number=99,
                project_id=project_id,
                period_month="2024-01",
                period_start=JAN_START,
                period_end=JAN_END,
                active_period_key=period_key(JAN_START, JAN_END),
                invoice_date=JAN_END,
                due_date=JAN_END,
                subtotal=Decimal("0"),
                tax_rate=Decimal("0"),
                tax=Decimal("0"),
                total_amount=Decimal("0"),
            ))
            await other.commit()

        with pytest.raises(DuplicatePeriod) as exc_info:
            await service.assembler.persist(project, draft, JAN_START, JAN_END)

    assert exc_info.value.status_code == 409
    assert await invoice_numbers(file_sessions) == ["INV-OTHER-00001"]
    assert await billed_to(file_sessions, delivery_id) is None
    assert await invoice_counter(file_sessions, project_id) == 0


async def test_database_failure_rolls_back_invoice_and_attribution(file_sessions, monkeypatch):
    project_id, delivery_id = await seed_project(file_sessions)

    async def failing_attribution(self, invoice_id, lines):
        raise OperationalError("UPDATE deliveries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(InvoiceAssembler, "_attribute_records", failing_attribution)

    async with file_sessions() as session:
        with pytest.raises(PersistenceError) as exc_info:
            await InvoiceService(session).generate(project_id, JAN_START, JAN_END)

    assert exc_info.value.status_code == 500
    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert await invoice_numbers(file_sessions) == []
    assert await billed_to(file_sessions, delivery_id) is None
    assert await invoice_counter(file_sessions, project_id) == 0


# ============================================================================
# CONCURRENT GENERATION
# ============================================================================

async def test_concurrent_generates_for_one_period_bill_once(file_sessions):
    project_id, delivery_id = await seed_project(file_sessions)

    async def generate():
        async with file_sessions() as session:
            return await InvoiceService(session).generate(project_id, JAN_START, JAN_END)

    results = await asyncio.gather(generate(), generate(), return_exceptions=True)

    invoices = [r for r in results if isinstance(r, Invoice)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(invoices) == 1
    assert len(errors) == 1 and isinstance(errors[0], DuplicatePeriod)
    assert await invoice_numbers(file_sessions) == ["INV-PRJ001-00001"]
    assert await billed_to(file_sessions, delivery_id) == invoices[0].id


async def test_overlapping_generate_cannot_bill_a_record_twice(file_sessions):
    project_id, delivery_id = await seed_project(file_sessions)

    async with file_sessions() as late_session, file_sessions() as early_session:
        late = InvoiceService(late_session)
        project = await late._get_project(project_id)
        # mid-month period passes its checks and computes before January commits
        _, _, draft = await late._compute(project, MID_START, MID_END, strict=True)
        assert [line.source_ids for line in draft.lines] == [[str(delivery_id)]]

        january = await InvoiceService(early_session).generate(project_id, JAN_START, JAN_END)

        with pytest.raises(DuplicatePeriod) as exc_info:
            await late.assembler.persist(project, draft, MID_START, MID_END)

    assert exc_info.value.details == {"source_table": "deliveries"}
    assert await invoice_numbers(file_sessions) == [january.invoice_number]
    assert await billed_to(file_sessions, delivery_id) == january.id
    assert await invoice_counter(file_sessions, project_id) == 1
