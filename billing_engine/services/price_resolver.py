"""
Price Resolver.

Determines the unit price of a rule for a bucket of records. Price-list
lookups run against a PriceBook loaded before computation starts, so the
resolver itself does no I/O and can serve concurrent previews.
"""
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing_engine.core.exceptions import PriceNotFound
from billing_engine.models.billing_rule import RuleType, PriceSource
from billing_engine.models.price_list import PriceList
from billing_engine.services.formula import compile_formula
from billing_engine.services.performance_aggregator import PerformanceRecord
from billing_engine.services.rule_matcher import MatchedRule


# Record field a price-list entry is keyed by, per rule type
DEFAULT_PRICE_KEY_FIELDS = {
    RuleType.EA: "part_no",
    RuleType.MIXED: "part_no",
    RuleType.VOLUME: "part_no",
    RuleType.PALLET: "pallet_type",
    RuleType.LABOR: "work_type",
    RuleType.CONTAINER: "container_type",
}

CONSTANT_PRICE_SOURCES = frozenset({
    PriceSource.FIXED_PRICE, PriceSource.PALLET_RATE, PriceSource.CONTRACT_RATE,
})


@dataclass(frozen=True)
class PriceBook:
    """Preloaded price-list entries: (price list id, item key) -> {price field: price}."""
    entries: Dict[Tuple[uuid.UUID, str], Dict[str, Decimal]] = field(default_factory=dict)
    price_list_ids: frozenset = frozenset()

    def lookup(self, price_list_id: uuid.UUID, item_key: str, price_field: str) -> Optional[Decimal]:
        prices = self.entries.get((price_list_id, item_key))
        if prices is None:
            return None
        return prices.get(price_field)


async def load_price_book(db: AsyncSession, price_list_ids: Iterable[uuid.UUID]) -> PriceBook:
    """Read the referenced active price lists and their entries."""
    ids = {pid for pid in price_list_ids if pid is not None}
    if not ids:
        return PriceBook()

    result = await db.execute(
        select(PriceList)
        .options(selectinload(PriceList.entries))
        .where(PriceList.id.in_(ids), PriceList.is_active == True)  # noqa: E712
    )
    entries: Dict[Tuple[uuid.UUID, str], Dict[str, Decimal]] = {}
    found = set()
    for price_list in result.scalars().all():
        found.add(price_list.id)
        for entry in price_list.entries:
            prices = {
                name: Decimal(str(value))
                for name, value in (entry.prices or {}).items()
                if value is not None
            }
            if entry.unit_price is not None:
                prices["unit_price"] = entry.unit_price
            entries[(price_list.id, entry.item_key)] = prices
    return PriceBook(entries=entries, price_list_ids=frozenset(found))


# Names a composite or grouping formula may reference
FORMULA_VARIABLES = frozenset({
    "quantity", "baseRate", "count", "hours", "weight", "volume", "palletCount", "laborRate",
})


def _sum(records: Sequence[PerformanceRecord], name: str) -> Decimal:
    return sum((r.decimal(name) or Decimal("0") for r in records), Decimal("0"))


def formula_variables(
    rule: MatchedRule,
    records: Sequence[PerformanceRecord],
    quantity: Decimal,
) -> Dict[str, Decimal]:
    """Variables a composite formula can reference for one bucket."""
    labor_rate = next((r.decimal("labor_rate") for r in records if r.get("labor_rate") is not None), None)
    return {
        "quantity": quantity,
        "baseRate": rule.config.unit_price or Decimal("0"),
        "count": Decimal(len(records)),
        "hours": _sum(records, "hours"),
        "weight": _sum(records, "weight"),
        "volume": _sum(records, "volume"),
        "palletCount": _sum(records, "pallet_count"),
        "laborRate": labor_rate or getattr(rule.config, "fallback_rate", None) or Decimal("0"),
    }


class PriceResolver:
    """Unit price lookup per price source."""

    def __init__(self, price_book: Optional[PriceBook] = None):
        self.price_book = price_book or PriceBook()

    def resolve(
        self,
        rule: MatchedRule,
        records: Sequence[PerformanceRecord],
        quantity: Decimal,
        rule_type: Optional[RuleType] = None,
    ) -> Decimal:
        """
        Unit price for `rule` over a bucket of records.

        rule_type overrides the rule's own type when a MIXED rule prices one
        of its variable components.

        Raises:
            PriceNotFound: when the source has no price for the bucket
            FormulaError: when a composite formula fails to evaluate
        """
        source = rule.price_source
        rule_type = rule_type or rule.rule_type
        config = rule.config

        if source in CONSTANT_PRICE_SOURCES:
            if config.unit_price is None:
                raise PriceNotFound(
                    f"Rule '{rule.rule_name}' has no unit price configured",
                    {"rule_id": _id(rule), "price_source": source.value}
                )
            return config.unit_price

        if source == PriceSource.PRICE_LIST:
            return self._from_price_list(rule, records, rule_type)

        if source == PriceSource.LABOR_RATE:
            for record in records:
                rate = record.decimal("labor_rate")
                if rate is not None:
                    return rate
            fallback = getattr(config, "fallback_rate", None) or config.unit_price
            if fallback is None:
                raise PriceNotFound(
                    f"No labor rate for rule '{rule.rule_name}' and no fallback rate configured",
                    {"rule_id": _id(rule), "price_source": source.value}
                )
            return fallback

        # composite_rate
        formula = compile_formula(config.formula or "")
        return formula.evaluate(formula_variables(rule, records, quantity))

    def _from_price_list(
        self,
        rule: MatchedRule,
        records: Sequence[PerformanceRecord],
        rule_type: RuleType,
    ) -> Decimal:
        config = rule.config
        details = {"rule_id": _id(rule), "price_source": PriceSource.PRICE_LIST.value}
        if config.price_list_id is None or config.price_list_id not in self.price_book.price_list_ids:
            raise PriceNotFound(
                f"Price list {config.price_list_id} not found for rule '{rule.rule_name}'",
                {**details, "price_list_id": str(config.price_list_id)}
            )

        key_field = config.price_key_field or DEFAULT_PRICE_KEY_FIELDS.get(rule_type, "part_no")
        item_key = records[0].get(key_field) if records else None
        if item_key is None:
            raise PriceNotFound(
                f"Records have no '{key_field}' to look up in the price list",
                {**details, "price_key_field": key_field}
            )

        price = self.price_book.lookup(config.price_list_id, str(item_key), config.price_field)
        if price is None:
            raise PriceNotFound(
                f"No '{config.price_field}' price for '{item_key}' in price list",
                {**details, "item_key": str(item_key), "price_field": config.price_field}
            )
        return price


def _id(rule: MatchedRule) -> Optional[str]:
    return str(rule.id) if rule.id else None
