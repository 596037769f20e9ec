"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""
from billing_engine.models.project import Project
from billing_engine.models.billing_rule import (
    ProjectBillingRule, MasterBillingRule,
    RuleType, UnitBasis, PriceSource, GroupingKey, VARIABLE_RULE_TYPES,
)
from billing_engine.models.performance import (
    Delivery, LaborLog, DeliveryStatus, LaborLogStatus,
)
from billing_engine.models.price_list import PriceList, PriceListEntry
from billing_engine.models.invoice import (
    Invoice, InvoiceItem, InvoiceStatus, GeneratedFrom,
)
from billing_engine.models.billing_sequence import BillingSequence, SequenceScope

__all__ = [
    "Project",
    "ProjectBillingRule", "MasterBillingRule",
    "RuleType", "UnitBasis", "PriceSource", "GroupingKey", "VARIABLE_RULE_TYPES",
    "Delivery", "LaborLog", "DeliveryStatus", "LaborLogStatus",
    "PriceList", "PriceListEntry",
    "Invoice", "InvoiceItem", "InvoiceStatus", "GeneratedFrom",
    "BillingSequence", "SequenceScope",
]
