"""Currency precision and rounding."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from billing_engine.config import settings


def currency_precision(currency: Optional[str], override: Optional[int] = None) -> int:
    """Decimal places billed in `currency`; a project override wins."""
    if override is not None:
        return override
    if currency and currency.upper() in settings.ZERO_DECIMAL_CURRENCIES:
        return 0
    return 2


def round_amount(value: Decimal, precision: int) -> Decimal:
    """Round half up to `precision` places. Only final amounts are rounded."""
    return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)
