"""Tests for rule ranking and matching."""
import uuid
from datetime import date

import pytest

from billing_engine.core.exceptions import BillingValidationError
from billing_engine.models.billing_rule import (
    ProjectBillingRule, RuleType, UnitBasis, PriceSource, GroupingKey
)
from billing_engine.schemas.rule_config import parse_rule_config
from billing_engine.services.rule_matcher import (
    MatchedRule, RuleMatcher, rank_rules, needs_master_template
)


def make_rule(name, priority=0, seq=1, rule_type="EA", effective_from=None, effective_to=None):
    return MatchedRule(
        id=uuid.uuid4(),
        rule_name=name,
        description=None,
        rule_type=RuleType(rule_type),
        unit_basis=UnitBasis.EA,
        price_source=PriceSource.FIXED_PRICE,
        grouping_key=GroupingKey.NONE,
        config=parse_rule_config(rule_type, {"unitPrice": "1"}),
        priority=priority,
        creation_seq=seq,
        effective_from=effective_from,
        effective_to=effective_to,
    )


def test_rank_by_priority_then_creation_sequence():
    rules = [
        make_rule("b", priority=5, seq=2),
        make_rule("c", priority=10, seq=3),
        make_rule("a", priority=5, seq=1),
    ]
    ranked = rank_rules(rules, date(2024, 1, 31))
    assert [r.rule_name for r in ranked] == ["c", "a", "b"]


def test_rank_drops_rules_not_effective_on_date():
    rules = [
        make_rule("expired", effective_to=date(2023, 12, 31)),
        make_rule("future", effective_from=date(2024, 2, 1)),
        make_rule("open"),
        make_rule("bounded", effective_from=date(2024, 1, 1), effective_to=date(2024, 1, 31)),
    ]
    ranked = rank_rules(rules, date(2024, 1, 31))
    assert sorted(r.rule_name for r in ranked) == ["bounded", "open"]


def test_needs_master_template():
    assert not needs_master_template([make_rule("ea")])
    assert needs_master_template([make_rule("ea"), make_rule("fixed", rule_type="FIXED")])
    assert needs_master_template([make_rule("mixed", rule_type="MIXED")])


def test_from_model_rejects_invalid_stored_config():
    row = ProjectBillingRule(
        id=uuid.uuid4(),
        project_id=uuid.uuid4(),
        rule_name="Broken",
        rule_type="EA",
        unit_basis="EA",
        price_source="fixed_price",
        grouping_key="none",
        config={"unitPrice": "not-a-number"},
        priority=0,
        creation_seq=1,
    )
    with pytest.raises(BillingValidationError):
        MatchedRule.from_model(row)


async def test_match_loads_active_rules_and_master(client, db, create_project, create_rule, create_master):
    project = await create_project()
    await create_rule(project["id"], ruleName="low", priority=1, config={"unitPrice": "1"})
    await create_rule(project["id"], ruleName="high", priority=9, config={"unitPrice": "1"})
    await create_rule(project["id"], ruleName="inactive", priority=99, isActive=False, config={"unitPrice": "1"})
    await create_rule(
        project["id"], ruleName="fee", ruleType="FIXED", unitBasis="Month", priority=1, config={}
    )
    await create_master(project["id"], [{"itemName": "Warehouse Fee", "unitPrice": "5000", "isFixed": True}])

    matched = await RuleMatcher(db).match(uuid.UUID(project["id"]), as_of=date(2024, 1, 31))

    assert [r.rule_name for r in matched.rules] == ["high", "low", "fee"]
    assert [item.item_name for item in matched.master_items] == ["Warehouse Fee"]
