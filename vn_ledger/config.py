"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "VN Ledger Posting & Budget Control"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/vn_ledger"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Posting rules
    # Vouchers are kept in VND, so one dong absorbs rounding
    # from amounts computed upstream (VAT splits, allocations).
    BALANCE_TOLERANCE: Decimal = Decimal(os.getenv("BALANCE_TOLERANCE", "1"))
    DEFAULT_LOCKED_UNTIL: str = os.getenv("DEFAULT_LOCKED_UNTIL", "1900-01-01")

    # Budget control defaults, used when no budget period row
    # exists for the fiscal year being checked
    BUDGET_WARNING_THRESHOLD: Decimal = Decimal(
        os.getenv("BUDGET_WARNING_THRESHOLD", "0.8")
    )
    BUDGET_BLOCK_THRESHOLD: Decimal = Decimal(
        os.getenv("BUDGET_BLOCK_THRESHOLD", "1.0")
    )
    BUDGET_ALLOW_OVERRIDE: bool = (
        os.getenv("BUDGET_ALLOW_OVERRIDE", "false").lower() == "true"
    )
    AUTHORIZATION_TTL_HOURS: int = int(os.getenv("AUTHORIZATION_TTL_HOURS", "48"))

    # Pagination
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "100"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "1000"))


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls.
    """
    return Settings()
