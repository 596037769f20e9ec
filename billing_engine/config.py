from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from typing import List
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Billing Rule Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server (billing-engine console script)
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Invoicing defaults (project settings override these)
    DEFAULT_TAX_RATE: Decimal = Decimal("0.10")  # 10%
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_PAYMENT_TERMS_DAYS: int = 30
    INVOICE_NUMBER_PREFIX: str = "INV"
    INVOICE_NUMBER_PADDING: int = 5

    # Currencies billed without minor units
    ZERO_DECIMAL_CURRENCIES: List[str] = [
        "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW",
        "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    ]

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @field_validator('CORS_ORIGINS', 'ZERO_DECIMAL_CURRENCIES', mode='before')
    @classmethod
    def parse_string_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        return list(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
