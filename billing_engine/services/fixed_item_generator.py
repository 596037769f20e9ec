"""
Fixed Item Generator.

Flat-fee lines for FIXED rules and for the fixed part of MIXED rules, taken
from the project's master template, the rule's own items, or the rule's
constant monthly price.
"""
from decimal import Decimal
from typing import List, Optional, Sequence

from billing_engine.core.exceptions import PriceNotFound
from billing_engine.core.money import round_amount
from billing_engine.models.billing_rule import RuleType, GroupingKey, UnitBasis
from billing_engine.schemas.billing_rule import MasterItem
from billing_engine.schemas.rule_config import RuleItem
from billing_engine.services.line_computer import InvoiceLineData
from billing_engine.services.rule_matcher import MatchedRule


SOURCE_FIXED = "fixed"


class FixedItemGenerator:

    def __init__(self, precision: int, strict: bool = True):
        self.precision = precision
        self.strict = strict

    def from_master(
        self,
        items: Sequence[MasterItem],
        rule: Optional[MatchedRule] = None,
    ) -> List[InvoiceLineData]:
        """
        One line per template item.

        Fixed items bill quantity 1 at unit_price verbatim; other items bill
        quantity x unit_price. Without a rule the lines are template lines.
        """
        lines = []
        for item in items:
            if item.is_fixed:
                quantity = Decimal("1")
                amount = item.unit_price
            else:
                quantity = item.quantity
                amount = item.quantity * item.unit_price
            lines.append(self._line(rule, item.item_name, quantity, item.unit, item.unit_price, amount))
        return lines

    def from_rule_items(self, rule: MatchedRule, items: Sequence[RuleItem]) -> List[InvoiceLineData]:
        return [
            self._line(rule, item.description, item.quantity, item.unit, item.unit_price,
                       item.quantity * item.unit_price)
            for item in items
        ]

    def generate(
        self,
        rule: MatchedRule,
        master_items: Optional[Sequence[MasterItem]],
        template_billed: bool = False,
    ) -> List[InvoiceLineData]:
        """
        Fixed lines of a FIXED or MIXED rule.

        master_items is the template still available to this rule (None once
        another rule consumed it or when the project has none).
        template_billed tells whether the template was already billed on
        this invoice; then a FIXED rule without items of its own adds nothing.
        """
        config = rule.config

        if rule.rule_type == RuleType.MIXED:
            lines = []
            if config.include_master_items and master_items:
                lines.extend(self.from_master(master_items, rule))
            lines.extend(self.from_rule_items(rule, config.items))
            return lines

        if master_items:
            return self.from_master(master_items, rule)
        if config.items:
            return self.from_rule_items(rule, config.items)
        if config.unit_price is not None:
            return [self._line(
                rule, rule.description or rule.rule_name, Decimal("1"),
                UnitBasis.MONTH.value, config.unit_price, config.unit_price
            )]
        if template_billed:
            return []

        error = PriceNotFound(
            f"Fixed rule '{rule.rule_name}' has no master template, items or unit price",
            {"rule_id": str(rule.id) if rule.id else None}
        )
        if self.strict:
            raise error
        line = self._line(rule, rule.description or rule.rule_name, Decimal("1"),
                          UnitBasis.MONTH.value, Decimal("0"), Decimal("0"))
        line.error = f"{error.error_type}: {error.message}"
        return [line]

    def _line(
        self,
        rule: Optional[MatchedRule],
        description: str,
        quantity: Decimal,
        unit: str,
        unit_price: Decimal,
        amount: Decimal,
    ) -> InvoiceLineData:
        return InvoiceLineData(
            description=description,
            quantity=quantity,
            unit=unit,
            unit_price=unit_price,
            amount=round_amount(amount, self.precision),
            rule_id=rule.id if rule else None,
            rule_name=rule.rule_name if rule else None,
            rule_type=rule.rule_type.value if rule else None,
            grouping_key=GroupingKey.NONE.value,
            grouping_value=None,
            source_type=SOURCE_FIXED,
            source_ids=[],
        )
