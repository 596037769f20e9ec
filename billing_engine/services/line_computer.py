"""
Variable Line Computer.

Turns performance records into invoice lines for the variable rule types
(EA, PALLET, LABOR, VOLUME, CONTAINER) and for the variable components of
MIXED rules.

Per rule:
1. select the records the rule type measures
2. drop records already claimed by a higher-ranked rule, or dated outside
   the rule's effective window
3. apply the rule's filters
4. partition by grouping key (config.group_by overrides it)
5. split each partition so every line carries a single unit price
6. measure, price, round the amount
7. claim every record that contributed to an emitted line
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from billing_engine.core.exceptions import BillingEngineError, FormulaError, PriceNotFound
from billing_engine.core.money import round_amount
from billing_engine.models.billing_rule import RuleType, UnitBasis, PriceSource, GroupingKey
from billing_engine.schemas.rule_config import FilterOperator, RuleFilter
from billing_engine.services.formula import compile_formula
from billing_engine.services.performance_aggregator import PerformanceData, PerformanceRecord
from billing_engine.services.price_resolver import (
    PriceResolver, DEFAULT_PRICE_KEY_FIELDS, formula_variables
)
from billing_engine.services.rule_matcher import MatchedRule


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ALL_KEY = "ALL"
UNKNOWN_KEY = "UNKNOWN"

# Claimed records: (source_type, record id)
ClaimSet = Set[Tuple[str, Any]]

_GROUP_FIELDS = {
    GroupingKey.PART_NO: "part_no",
    GroupingKey.PALLET_NO: "pallet_no",
    GroupingKey.WORK_TYPE: "work_type",
}

_COMPONENT_UNITS = {
    RuleType.EA: UnitBasis.EA.value,
    RuleType.PALLET: UnitBasis.PALLET.value,
    RuleType.LABOR: UnitBasis.HOUR.value,
    RuleType.VOLUME: UnitBasis.CBM.value,
    RuleType.CONTAINER: UnitBasis.CONTAINER.value,
}


@dataclass
class InvoiceLineData:
    """Computed invoice line, before numbering."""
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    amount: Decimal
    rule_id: Optional[Any] = None
    rule_name: Optional[str] = None
    rule_type: Optional[str] = None
    grouping_key: Optional[str] = None
    grouping_value: Optional[str] = None
    source_type: Optional[str] = None
    source_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    line_number: int = 0


# ============================================================================
# FILTERS
# ============================================================================

def _comparable(record_value: Any, operand: Any) -> Tuple[Any, Any]:
    """Coerce a filter operand to the record value's type."""
    if isinstance(record_value, Decimal):
        return record_value, Decimal(str(operand))
    if isinstance(record_value, date):
        return record_value, date.fromisoformat(str(operand))
    return str(record_value), str(operand)


def _compare(op: FilterOperator, record_value: Any, operand: Any) -> bool:
    if op == FilterOperator.IN:
        options = operand if isinstance(operand, (list, tuple, set)) else [operand]
        return any(_compare(FilterOperator.EQ, record_value, option) for option in options)
    if op == FilterOperator.CONTAINS:
        return str(operand).lower() in str(record_value).lower()

    left, right = _comparable(record_value, operand)
    if op == FilterOperator.EQ:
        return left == right
    if op == FilterOperator.GT:
        return left > right
    if op == FilterOperator.GTE:
        return left >= right
    if op == FilterOperator.LT:
        return left < right
    return left <= right


def matches_filters(record: PerformanceRecord, filters: Sequence[RuleFilter]) -> bool:
    """
    True when the record satisfies every filter.

    A field absent or null on the record, or an operand that cannot be
    compared with it, excludes the record.
    """
    for f in filters:
        value = record.get(f.field)
        if value is None:
            return False
        try:
            if not _compare(FilterOperator(f.operator), value, f.value):
                return False
        except (ArithmeticError, ValueError, TypeError):
            return False
    return True


# ============================================================================
# SELECTION / MEASURES
# ============================================================================

def measure_field(rule: MatchedRule) -> str:
    configured = getattr(rule.config, "measure_field", None)
    if configured:
        return configured
    return "weight" if rule.unit_basis == UnitBasis.KG else "volume"


def select_records(rule_type: RuleType, rule: MatchedRule, data: PerformanceData) -> List[PerformanceRecord]:
    if rule_type == RuleType.LABOR:
        return list(data.labor_logs)
    if rule_type == RuleType.EA:
        return [r for r in data.deliveries if r.get("part_no")]
    if rule_type == RuleType.PALLET:
        return [r for r in data.deliveries if r.get("pallet_no") or r.get("pallet_count") is not None]
    if rule_type == RuleType.VOLUME:
        name = measure_field(rule)
        return [r for r in data.deliveries if r.get(name) is not None]
    if rule_type == RuleType.CONTAINER:
        return [r for r in data.deliveries if r.get("container_no")]
    return []


def measure(
    rule_type: RuleType,
    rule: MatchedRule,
    records: Sequence[PerformanceRecord],
    counts_pallets: bool,
) -> Decimal:
    if rule_type == RuleType.EA:
        return sum((r.decimal("quantity") or ZERO for r in records), ZERO)
    if rule_type == RuleType.PALLET:
        if counts_pallets:
            return Decimal(len(records))
        return sum((
            r.decimal("pallet_count") if r.get("pallet_count") is not None else Decimal("1")
            for r in records
        ), ZERO)
    if rule_type == RuleType.LABOR:
        return sum((r.decimal("hours") or ZERO for r in records), ZERO)
    if rule_type == RuleType.VOLUME:
        name = measure_field(rule)
        return sum((r.decimal(name) or ZERO for r in records), ZERO)
    if rule_type == RuleType.CONTAINER:
        return Decimal(len({r.get("container_no") for r in records}))
    return ZERO


# ============================================================================
# PARTITIONING
# ============================================================================

def _text(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _record_variables(rule: MatchedRule, record: PerformanceRecord) -> Dict[str, Decimal]:
    return formula_variables(
        rule, [record], record.decimal("quantity") or record.decimal("hours") or ZERO
    )


def grouping_function(rule: MatchedRule) -> Tuple[str, Callable[[PerformanceRecord], str]]:
    """(grouping label, record -> bucket key) for a rule."""
    group_by = rule.config.group_by
    if group_by:
        def by_fields(record: PerformanceRecord) -> str:
            return "|".join(
                _text(record.get(name)) if record.get(name) is not None else ""
                for name in group_by
            )
        return ",".join(group_by), by_fields

    key = rule.grouping_key
    if key == GroupingKey.NONE:
        return key.value, lambda record: ALL_KEY
    if key == GroupingKey.DATE:
        return key.value, lambda record: record.event_date.isoformat()
    if key == GroupingKey.MIXED:
        formula = compile_formula(rule.config.group_formula or "")

        def by_formula(record: PerformanceRecord) -> str:
            return _text(formula.evaluate(_record_variables(rule, record)))
        return key.value, by_formula

    name = _GROUP_FIELDS[key]

    def by_field(record: PerformanceRecord) -> str:
        value = record.get(name)
        return _text(value) if value not in (None, "") else UNKNOWN_KEY
    return key.value, by_field


def partition(
    records: Sequence[PerformanceRecord],
    key_for: Callable[[PerformanceRecord], str],
) -> "OrderedDict[str, List[PerformanceRecord]]":
    """Buckets ordered by key; records keep their (date, number) order."""
    buckets: Dict[str, List[PerformanceRecord]] = {}
    for record in records:
        buckets.setdefault(key_for(record), []).append(record)
    return OrderedDict(sorted(buckets.items()))


def price_split_field(rule: MatchedRule, rule_type: RuleType) -> Optional[str]:
    """Field that must be uniform within a line for its price to be single-valued."""
    if rule.price_source == PriceSource.PRICE_LIST:
        return rule.config.price_key_field or DEFAULT_PRICE_KEY_FIELDS.get(rule_type, "part_no")
    if rule.price_source == PriceSource.LABOR_RATE:
        return "labor_rate"
    return None


# ============================================================================
# LINE COMPUTER
# ============================================================================

class LineComputer:
    """
    Computes variable lines.

    With strict=True (generate) price and formula failures propagate; with
    strict=False (preview) the affected line is emitted with `error` set and a
    zero amount.
    """

    def __init__(self, resolver: PriceResolver, precision: int, strict: bool = True):
        self.resolver = resolver
        self.precision = precision
        self.strict = strict

    def compute(
        self,
        rule: MatchedRule,
        data: PerformanceData,
        claimed: ClaimSet,
        rule_type: Optional[RuleType] = None,
    ) -> List[InvoiceLineData]:
        """
        Lines for one rule, or for one component type of a MIXED rule.

        Adds the records of emitted lines to `claimed`.
        """
        rule_type = rule_type or rule.rule_type
        candidates = [
            r for r in select_records(rule_type, rule, data)
            if (r.source_type, r.id) not in claimed
            and rule.covers(r.event_date)
            and matches_filters(r, rule.config.filters)
        ]
        if not candidates:
            return []

        try:
            grouping_label, key_for = grouping_function(rule)
            buckets = partition(candidates, key_for)
        except FormulaError as e:
            if self.strict:
                raise
            claimed.update((r.source_type, r.id) for r in candidates)
            return [self._error_line(rule, rule_type, candidates, GroupingKey.MIXED.value, None, e)]

        counts_pallets = (
            rule_type == RuleType.PALLET
            and not rule.config.group_by
            and rule.grouping_key == GroupingKey.PALLET_NO
        )
        split_field = price_split_field(rule, rule_type)

        lines: List[InvoiceLineData] = []
        for bucket_key, bucket in buckets.items():
            for records in self._split_by_price(bucket, split_field):
                quantity = measure(rule_type, rule, records, counts_pallets)
                if quantity == 0:
                    continue
                line = self._price_line(rule, rule_type, records, quantity, grouping_label, bucket_key)
                lines.append(line)
                claimed.update((r.source_type, r.id) for r in records)
        return lines

    @staticmethod
    def _split_by_price(
        bucket: List[PerformanceRecord],
        split_field: Optional[str],
    ) -> List[List[PerformanceRecord]]:
        if split_field is None:
            return [bucket]
        groups: Dict[str, List[PerformanceRecord]] = {}
        for record in bucket:
            value = record.get(split_field)
            groups.setdefault("" if value is None else _text(value), []).append(record)
        return [groups[k] for k in sorted(groups)]

    def _price_line(
        self,
        rule: MatchedRule,
        rule_type: RuleType,
        records: List[PerformanceRecord],
        quantity: Decimal,
        grouping_label: str,
        bucket_key: str,
    ) -> InvoiceLineData:
        try:
            unit_price = self.resolver.resolve(rule, records, quantity, rule_type)
        except (PriceNotFound, FormulaError) as e:
            if self.strict:
                raise
            logger.warning(f"Preview line for rule '{rule.rule_name}' ({bucket_key}) flagged: {e.message}")
            return self._error_line(rule, rule_type, records, grouping_label, bucket_key, e, quantity)

        return InvoiceLineData(
            description=describe(rule, rule_type, records[0], bucket_key),
            quantity=quantity,
            unit=line_unit(rule, rule_type),
            unit_price=unit_price,
            amount=round_amount(quantity * unit_price, self.precision),
            rule_id=rule.id,
            rule_name=rule.rule_name,
            rule_type=rule.rule_type.value,
            grouping_key=grouping_label,
            grouping_value=bucket_key,
            source_type=records[0].source_type,
            source_ids=[str(r.id) for r in records],
        )

    def _error_line(
        self,
        rule: MatchedRule,
        rule_type: RuleType,
        records: List[PerformanceRecord],
        grouping_label: str,
        bucket_key: Optional[str],
        error: BillingEngineError,
        quantity: Optional[Decimal] = None,
    ) -> InvoiceLineData:
        return InvoiceLineData(
            description=describe(rule, rule_type, records[0], bucket_key or ALL_KEY),
            quantity=quantity if quantity is not None else ZERO,
            unit=line_unit(rule, rule_type),
            unit_price=ZERO,
            amount=round_amount(ZERO, self.precision),
            rule_id=rule.id,
            rule_name=rule.rule_name,
            rule_type=rule.rule_type.value,
            grouping_key=grouping_label,
            grouping_value=bucket_key,
            source_type=records[0].source_type,
            source_ids=[str(r.id) for r in records],
            error=f"{error.error_type}: {error.message}",
        )


def line_unit(rule: MatchedRule, rule_type: RuleType) -> str:
    if rule.rule_type == RuleType.MIXED or rule.unit_basis == UnitBasis.MIXED:
        if rule_type == RuleType.VOLUME and measure_field(rule) == "weight":
            return UnitBasis.KG.value
        return _COMPONENT_UNITS.get(rule_type, rule.unit_basis.value)
    return rule.unit_basis.value


def describe(rule: MatchedRule, rule_type: RuleType, sample: PerformanceRecord, bucket_key: str) -> str:
    """Line description from the rule type and the bucket's first record."""
    if bucket_key == ALL_KEY:
        return rule.description or rule.rule_name
    if rule_type == RuleType.EA:
        label = sample.get("part_name") or sample.get("part_no") or "Part"
    elif rule_type == RuleType.PALLET:
        label = sample.get("pallet_type") or "Pallet"
    elif rule_type == RuleType.LABOR:
        label = f"Labor - {sample.get('work_type') or 'Work'}"
    elif rule_type == RuleType.CONTAINER:
        label = sample.get("container_type") or "Container"
    else:
        label = rule.description or rule.rule_name
    return f"{label} - {bucket_key}"
