"""Tests for unit price resolution."""
import uuid
from datetime import date
from decimal import Decimal

import pytest

from billing_engine.core.exceptions import PriceNotFound, FormulaError
from billing_engine.models.billing_rule import RuleType, UnitBasis, PriceSource, GroupingKey
from billing_engine.schemas.rule_config import parse_rule_config
from billing_engine.services.performance_aggregator import (
    PerformanceRecord, SOURCE_DELIVERY, SOURCE_LABOR
)
from billing_engine.services.price_resolver import PriceBook, PriceResolver
from billing_engine.services.rule_matcher import MatchedRule


PRICE_LIST_ID = uuid.uuid4()


def make_rule(rule_type="EA", price_source="fixed_price", unit_basis="EA", **config) -> MatchedRule:
    return MatchedRule(
        id=uuid.uuid4(),
        rule_name=f"{rule_type} rule",
        description=None,
        rule_type=RuleType(rule_type),
        unit_basis=UnitBasis(unit_basis),
        price_source=PriceSource(price_source),
        grouping_key=GroupingKey.NONE,
        config=parse_rule_config(rule_type, config),
    )


def delivery(**fields) -> PerformanceRecord:
    return PerformanceRecord(
        source_type=SOURCE_DELIVERY,
        id=uuid.uuid4(),
        number="DLV-1",
        event_date=date(2024, 1, 10),
        fields=fields,
    )


def labor(**fields) -> PerformanceRecord:
    return PerformanceRecord(
        source_type=SOURCE_LABOR,
        id=uuid.uuid4(),
        number="LAB-1",
        event_date=date(2024, 1, 10),
        fields=fields,
    )


@pytest.fixture
def resolver():
    book = PriceBook(
        entries={
            (PRICE_LIST_ID, "A1"): {"unit_price": Decimal("2.50"), "rush": Decimal("4.00")},
            (PRICE_LIST_ID, "EUR"): {"unit_price": Decimal("12.00")},
        },
        price_list_ids=frozenset({PRICE_LIST_ID}),
    )
    return PriceResolver(book)


@pytest.mark.parametrize("source", ["fixed_price", "pallet_rate", "contract_rate"])
def test_constant_sources_use_configured_unit_price(resolver, source):
    rule = make_rule(price_source=source, unitPrice="3.75")
    assert resolver.resolve(rule, [delivery(part_no="A1")], Decimal("1")) == Decimal("3.75")


def test_constant_source_without_unit_price(resolver):
    with pytest.raises(PriceNotFound):
        resolver.resolve(make_rule(), [delivery(part_no="A1")], Decimal("1"))


def test_price_list_lookup_by_part_number(resolver):
    rule = make_rule(price_source="price_list", priceListId=str(PRICE_LIST_ID))
    assert resolver.resolve(rule, [delivery(part_no="A1")], Decimal("25")) == Decimal("2.50")


def test_price_list_named_price_field(resolver):
    rule = make_rule(price_source="price_list", priceListId=str(PRICE_LIST_ID), priceField="rush")
    assert resolver.resolve(rule, [delivery(part_no="A1")], Decimal("1")) == Decimal("4.00")


def test_pallet_price_list_keyed_by_pallet_type(resolver):
    rule = make_rule("PALLET", "price_list", "Pallet", priceListId=str(PRICE_LIST_ID))
    assert resolver.resolve(rule, [delivery(pallet_type="EUR")], Decimal("2")) == Decimal("12.00")


def test_price_list_missing_item(resolver):
    rule = make_rule(price_source="price_list", priceListId=str(PRICE_LIST_ID))
    with pytest.raises(PriceNotFound) as exc_info:
        resolver.resolve(rule, [delivery(part_no="ZZ9")], Decimal("1"))
    assert exc_info.value.details["item_key"] == "ZZ9"


def test_price_list_unknown_list(resolver):
    rule = make_rule(price_source="price_list", priceListId=str(uuid.uuid4()))
    with pytest.raises(PriceNotFound):
        resolver.resolve(rule, [delivery(part_no="A1")], Decimal("1"))


def test_labor_rate_from_record_then_fallback(resolver):
    rule = make_rule("LABOR", "labor_rate", "Hour", fallbackRate="18.00")
    assert resolver.resolve(rule, [labor(hours=Decimal("2"), labor_rate=Decimal("22.00"))], Decimal("2")) \
        == Decimal("22.00")
    assert resolver.resolve(rule, [labor(hours=Decimal("2"))], Decimal("2")) == Decimal("18.00")


def test_labor_rate_without_any_rate(resolver):
    rule = make_rule("LABOR", "labor_rate", "Hour")
    with pytest.raises(PriceNotFound):
        resolver.resolve(rule, [labor(hours=Decimal("2"))], Decimal("2"))


def test_composite_rate_formula(resolver):
    rule = make_rule(price_source="composite_rate", unitPrice="2.00", formula="baseRate * 1.5 + 0.25")
    assert resolver.resolve(rule, [delivery(part_no="A1")], Decimal("10")) == Decimal("3.25")


def test_composite_rate_formula_error(resolver):
    rule = make_rule(price_source="composite_rate", formula="quantity / 0")
    with pytest.raises(FormulaError):
        resolver.resolve(rule, [delivery(part_no="A1")], Decimal("10"))
