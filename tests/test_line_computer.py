"""Tests for variable line computation and line assembly."""
import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from billing_engine.core.exceptions import PriceNotFound
from billing_engine.models.billing_rule import RuleType, UnitBasis, PriceSource, GroupingKey
from billing_engine.schemas.billing_rule import MasterItem
from billing_engine.schemas.rule_config import RuleFilter, parse_rule_config
from billing_engine.services.invoice_assembler import InvoiceAssembler, compute_totals
from billing_engine.services.line_computer import LineComputer, matches_filters
from billing_engine.services.performance_aggregator import (
    PerformanceData, PerformanceRecord, SOURCE_DELIVERY, SOURCE_LABOR
)
from billing_engine.services.price_resolver import PriceResolver
from billing_engine.services.rule_matcher import MatchedRule, MatchedRules


_seq = iter(range(1, 10_000))


def make_rule(
    rule_type="EA",
    price_source="fixed_price",
    unit_basis="EA",
    grouping_key="none",
    priority=0,
    name=None,
    **config,
) -> MatchedRule:
    return MatchedRule(
        id=uuid.uuid4(),
        rule_name=name or f"{rule_type} rule",
        description=None,
        rule_type=RuleType(rule_type),
        unit_basis=UnitBasis(unit_basis),
        price_source=PriceSource(price_source),
        grouping_key=GroupingKey(grouping_key),
        config=parse_rule_config(rule_type, config),
        priority=priority,
        creation_seq=next(_seq),
    )


def delivery(number, day=10, **fields) -> PerformanceRecord:
    values = {"quantity": Decimal("0")}
    values.update({k: Decimal(str(v)) if isinstance(v, (int, float)) else v for k, v in fields.items()})
    return PerformanceRecord(
        source_type=SOURCE_DELIVERY,
        id=uuid.uuid4(),
        number=number,
        event_date=date(2024, 1, day),
        fields=values,
    )


def labor(number, hours, work_type="Picking", day=10, **fields) -> PerformanceRecord:
    values = {"hours": Decimal(str(hours)), "work_type": work_type}
    values.update(fields)
    return PerformanceRecord(
        source_type=SOURCE_LABOR,
        id=uuid.uuid4(),
        number=number,
        event_date=date(2024, 1, day),
        fields=values,
    )


def compute(rule, data, claimed=None, strict=True):
    computer = LineComputer(PriceResolver(), precision=2, strict=strict)
    return computer.compute(rule, data, claimed if claimed is not None else set())


# ============================================================================
# LINE COMPUTER
# ============================================================================

def test_ea_lines_grouped_by_part_number():
    data = PerformanceData(deliveries=(
        delivery("D1", part_no="A1", part_name="Bracket", quantity=10),
        delivery("D2", part_no="B2", quantity=4),
        delivery("D3", part_no="A1", part_name="Bracket", quantity=15),
    ))
    rule = make_rule(grouping_key="part_no", unitPrice="2.50")

    lines = compute(rule, data)

    assert [(l.grouping_value, l.quantity, l.amount) for l in lines] == [
        ("A1", Decimal("25"), Decimal("62.50")),
        ("B2", Decimal("4"), Decimal("10.00")),
    ]
    assert lines[0].description == "Bracket - A1"
    assert lines[1].description == "B2 - B2"
    assert lines[0].unit == "EA"
    assert len(lines[0].source_ids) == 2


def test_amount_rounds_half_up():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=1),))
    rule = make_rule(unitPrice="0.125")
    assert compute(rule, data)[0].amount == Decimal("0.13")


def test_claimed_records_are_not_billed_twice():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=10),))
    claimed = set()
    first = compute(make_rule(unitPrice="1"), data, claimed)
    second = compute(make_rule(unitPrice="2"), data, claimed)
    assert len(first) == 1
    assert second == []


def test_pallet_rule_counts_pallets_per_pallet_number():
    data = PerformanceData(deliveries=(
        delivery("D1", pallet_no="P1", pallet_type="EUR"),
        delivery("D2", pallet_no="P2", pallet_type="EUR"),
    ))
    rule = make_rule("PALLET", "pallet_rate", "Pallet", grouping_key="pallet_no", unitPrice="12")
    lines = compute(rule, data)
    assert [(l.grouping_value, l.quantity, l.amount) for l in lines] == [
        ("P1", Decimal("1"), Decimal("12.00")),
        ("P2", Decimal("1"), Decimal("12.00")),
    ]
    assert lines[0].description == "EUR - P1"


def test_labor_lines_split_by_record_rate():
    data = PerformanceData(labor_logs=(
        labor("L1", 2, labor_rate=Decimal("20")),
        labor("L2", 3, labor_rate=Decimal("25")),
    ))
    rule = make_rule("LABOR", "labor_rate", "Hour", grouping_key="work_type")
    lines = compute(rule, data)
    assert [(l.quantity, l.unit_price, l.amount) for l in lines] == [
        (Decimal("2"), Decimal("20"), Decimal("40.00")),
        (Decimal("3"), Decimal("25"), Decimal("75.00")),
    ]
    assert lines[0].description == "Labor - Picking - Picking"


def test_volume_rule_measures_weight_for_kg():
    data = PerformanceData(deliveries=(
        delivery("D1", weight=120),
        delivery("D2", weight="30.5"),
    ))
    rule = make_rule("VOLUME", "contract_rate", "KG", unitPrice="0.10")
    lines = compute(rule, data)
    assert lines[0].quantity == Decimal("150.5")
    assert lines[0].amount == Decimal("15.05")


def test_container_rule_counts_distinct_containers():
    data = PerformanceData(deliveries=(
        delivery("D1", container_no="C1", container_type="40HC"),
        delivery("D2", container_no="C1", container_type="40HC"),
        delivery("D3", container_no="C2", container_type="20GP"),
    ))
    rule = make_rule("CONTAINER", "contract_rate", "Container", unitPrice="300")
    lines = compute(rule, data)
    assert lines[0].quantity == Decimal("2")
    assert lines[0].amount == Decimal("600.00")


def test_date_grouping_and_unknown_keys():
    data = PerformanceData(deliveries=(
        delivery("D1", day=3, part_no="A1", quantity=1),
        delivery("D2", day=5, part_no="A1", quantity=2),
    ))
    by_date = compute(make_rule(grouping_key="date", unitPrice="1"), data)
    assert [l.grouping_value for l in by_date] == ["2024-01-03", "2024-01-05"]

    logs = PerformanceData(labor_logs=(labor("L1", 1, work_type=""),))
    lines = compute(make_rule("LABOR", "contract_rate", "Hour", grouping_key="work_type", unitPrice="1"), logs)
    assert lines[0].grouping_value == "UNKNOWN"


def test_group_by_overrides_grouping_key():
    data = PerformanceData(deliveries=(
        delivery("D1", part_no="A1", po_number="PO1", quantity=1),
        delivery("D2", part_no="A1", po_number="PO2", quantity=1),
    ))
    rule = make_rule(grouping_key="part_no", unitPrice="1", groupBy=["partNo", "poNumber"])
    lines = compute(rule, data)
    assert [l.grouping_value for l in lines] == ["A1|PO1", "A1|PO2"]
    assert lines[0].grouping_key == "partNo,poNumber"


def test_filters_select_records():
    big = delivery("D1", part_no="A1", quantity=100)
    small = delivery("D2", part_no="A1", quantity=5)
    filters = [RuleFilter(field="quantity", operator="gte", value=50)]
    assert matches_filters(big, filters)
    assert not matches_filters(small, filters)
    assert not matches_filters(delivery("D3", quantity=60), [RuleFilter(field="partNo", operator="eq", value="A1")])

    rule = make_rule(unitPrice="1", filters=[{"field": "partNo", "operator": "in", "value": ["A1", "B2"]}])
    data = PerformanceData(deliveries=(big, delivery("D4", part_no="C3", quantity=1)))
    assert [l.quantity for l in compute(rule, data)] == [Decimal("100")]


def test_effective_window_excludes_records():
    rule = replace(make_rule(unitPrice="1"), effective_from=date(2024, 1, 15))
    data = PerformanceData(deliveries=(
        delivery("D1", day=10, part_no="A1", quantity=1),
        delivery("D2", day=20, part_no="A1", quantity=2),
    ))
    assert [l.quantity for l in compute(rule, data)] == [Decimal("2")]


def test_preview_flags_unpriced_line_instead_of_raising():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=3),))
    rule = make_rule()
    with pytest.raises(PriceNotFound):
        compute(rule, data, strict=True)

    lines = compute(rule, data, strict=False)
    assert lines[0].error.startswith("PriceNotFound")
    assert lines[0].amount == Decimal("0.00")


def test_mixed_grouping_formula():
    data = PerformanceData(deliveries=(
        delivery("D1", part_no="A1", quantity=3),
        delivery("D2", part_no="A2", quantity=3),
        delivery("D3", part_no="A3", quantity=7),
    ))
    rule = make_rule(grouping_key="mixed", unitPrice="1", groupFormula="min(quantity, 5)")
    lines = compute(rule, data)
    assert [(l.grouping_value, l.quantity) for l in lines] == [("3", Decimal("6")), ("5", Decimal("7"))]


def test_composite_price_and_mixed_grouping_use_separate_formulas():
    data = PerformanceData(deliveries=(
        delivery("D1", part_no="A1", quantity=2),
        delivery("D2", part_no="A2", quantity=8),
    ))
    rule = make_rule(
        price_source="composite_rate", grouping_key="mixed", unitPrice="2",
        formula="baseRate * 1.5", groupFormula="min(quantity, 5)",
    )
    lines = compute(rule, data)
    assert [(l.grouping_value, l.unit_price, l.amount) for l in lines] == [
        ("2", Decimal("3"), Decimal("6.00")),
        ("5", Decimal("3"), Decimal("24.00")),
    ]


# ============================================================================
# ASSEMBLY
# ============================================================================

def assemble(rules, data=PerformanceData(), master_items=None, template_items=None, strict=True):
    matched = MatchedRules(
        rules=tuple(sorted(rules, key=lambda r: r.rank)),
        master_items=tuple(master_items) if master_items else None,
    )
    return InvoiceAssembler.assemble(
        matched, data, PriceResolver(), precision=2, tax_rate=Decimal("0.10"),
        strict=strict, template_items=template_items,
    )


def test_fixed_rule_bills_master_template():
    master = [MasterItem(item_name="Warehouse Fee", unit_price=Decimal("5000"), is_fixed=True)]
    draft = assemble([make_rule("FIXED", unit_basis="Month")], master_items=master)

    assert len(draft.lines) == 1
    line = draft.lines[0]
    assert (line.description, line.quantity, line.amount) == ("Warehouse Fee", Decimal("1"), Decimal("5000.00"))
    assert draft.subtotal == Decimal("5000.00")
    assert draft.tax == Decimal("500.00")
    assert draft.total_amount == Decimal("5500.00")


def test_master_template_billed_once():
    master = [MasterItem(item_name="Warehouse Fee", unit_price=Decimal("5000"), is_fixed=True)]
    draft = assemble(
        [make_rule("FIXED", unit_basis="Month", priority=5), make_rule("FIXED", unit_basis="Month")],
        master_items=master,
    )
    assert [l.description for l in draft.lines] == ["Warehouse Fee"]
    assert any("produced no lines" in w for w in draft.warnings)


def test_higher_priority_rule_claims_records_first():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=10),))
    low = make_rule(priority=5, unitPrice="1.00", name="low")
    high = make_rule(priority=10, unitPrice="3.00", name="high")
    draft = assemble([low, high], data)
    assert [(l.rule_name, l.amount) for l in draft.lines] == [("high", Decimal("30.00"))]


def test_equal_priority_resolved_by_creation_order():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=1),))
    older = make_rule(unitPrice="1.00", name="older")
    newer = make_rule(unitPrice="2.00", name="newer")
    draft = assemble([newer, older], data)
    assert [l.rule_name for l in draft.lines] == ["older"]


def test_failed_grouping_formula_still_claims_records_in_preview():
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=10),))
    high = make_rule(priority=10, grouping_key="mixed", unitPrice="3.00", groupFormula="quantity / 0", name="high")
    low = make_rule(priority=5, unitPrice="1.00", name="low")
    draft = assemble([low, high], data, strict=False)

    assert [(l.rule_name, l.amount) for l in draft.lines] == [("high", Decimal("0.00"))]
    assert draft.lines[0].error.startswith("FormulaError")
    assert draft.subtotal == Decimal("0.00")


def test_mixed_rule_combines_template_and_components():
    master = [MasterItem(item_name="Storage", quantity=Decimal("2"), unit="Month", unit_price=Decimal("100"))]
    data = PerformanceData(
        deliveries=(delivery("D1", part_no="A1", quantity=10),),
        labor_logs=(labor("L1", 4),),
    )
    rule = make_rule(
        "MIXED", "contract_rate", "Mixed", unitPrice="1.50",
        components=["EA", "LABOR"], items=[{"description": "Admin", "unitPrice": "25"}],
    )
    draft = assemble([rule], data, master_items=master)

    assert [(l.description, l.unit, l.amount) for l in draft.lines] == [
        ("Storage", "Month", Decimal("200.00")),
        ("Admin", "Month", Decimal("25.00")),
        ("MIXED rule", "EA", Decimal("15.00")),
        ("MIXED rule", "Hour", Decimal("6.00")),
    ]
    assert [l.line_number for l in draft.lines] == [1, 2, 3, 4]


def test_template_items_replace_master_and_come_first():
    master = [MasterItem(item_name="Warehouse Fee", unit_price=Decimal("5000"), is_fixed=True)]
    override = [MasterItem(item_name="Special Fee", unit_price=Decimal("750"), is_fixed=True)]
    data = PerformanceData(deliveries=(delivery("D1", part_no="A1", quantity=2),))
    draft = assemble(
        [make_rule("FIXED", unit_basis="Month", priority=10), make_rule(unitPrice="1")],
        data, master_items=master, template_items=override,
    )
    assert [l.description for l in draft.lines][0] == "Special Fee"
    assert draft.lines[0].rule_id is None
    assert "Warehouse Fee" not in [l.description for l in draft.lines]


def test_fixed_rule_without_any_price():
    with pytest.raises(PriceNotFound):
        assemble([make_rule("FIXED", unit_basis="Month")])
    draft = assemble([make_rule("FIXED", unit_basis="Month")], strict=False)
    assert draft.lines[0].error.startswith("PriceNotFound")


def test_subtotal_is_sum_of_line_amounts():
    data = PerformanceData(deliveries=tuple(
        delivery(f"D{i}", part_no=f"P{i % 3}", quantity=Decimal("1.333")) for i in range(7)
    ))
    draft = assemble([make_rule(grouping_key="part_no", unitPrice="0.77")], data)
    assert draft.subtotal == sum(l.amount for l in draft.lines)
    assert draft.total_amount == draft.subtotal + draft.tax


def test_compute_totals_zero_decimal_currency():
    master = [MasterItem(item_name="Fee", unit_price=Decimal("1000.6"), is_fixed=True)]
    draft = InvoiceAssembler.assemble(
        MatchedRules(rules=(make_rule("FIXED", unit_basis="Month"),), master_items=tuple(master)),
        PerformanceData(), PriceResolver(), precision=0, tax_rate=Decimal("0.10"),
    )
    assert draft.lines[0].amount == Decimal("1001")
    assert compute_totals(draft.lines, Decimal("0.10"), 0) == (Decimal("1001"), Decimal("100"), Decimal("1101"))
