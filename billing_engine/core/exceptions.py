"""
Billing engine errors.

Each error carries the HTTP status it maps to; the application exception
handler in billing_engine.main renders them.
"""
from typing import Any, Dict, Optional


class BillingEngineError(Exception):
    """Base class for domain errors raised by the billing services."""
    status_code: int = 500
    error_type: str = "BillingEngineError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BillingValidationError(BillingEngineError):
    """Request is missing or has inconsistent inputs."""
    status_code = 400
    error_type = "ValidationError"


class NotFoundError(BillingEngineError):
    status_code = 404
    error_type = "NotFound"


class ProjectNotFound(NotFoundError):
    error_type = "ProjectNotFound"


class RuleNotFound(NotFoundError):
    error_type = "RuleNotFound"


class InvoiceNotFound(NotFoundError):
    error_type = "InvoiceNotFound"


class NoApplicableRule(BillingEngineError):
    """No active billing rule covers the requested period."""
    status_code = 400
    error_type = "NoApplicableRule"


class PriceNotFound(BillingEngineError):
    """A unit price could not be resolved for a rule and bucket."""
    status_code = 400
    error_type = "PriceNotFound"


class FormulaError(BillingEngineError):
    """A restricted formula failed to parse or evaluate."""
    status_code = 400
    error_type = "FormulaError"


class DuplicatePeriod(BillingEngineError):
    """A non-cancelled invoice already covers the project and period."""
    status_code = 409
    error_type = "DuplicatePeriod"


class InvalidStatusTransition(BillingEngineError):
    status_code = 409
    error_type = "InvalidStatusTransition"


class PersistenceError(BillingEngineError):
    """Commit failed; the transaction was rolled back."""
    status_code = 500
    error_type = "PersistenceError"
