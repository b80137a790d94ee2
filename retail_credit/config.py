"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .currency import Currency


class FinancingConfig(BaseSettings):
    """Retail credit engine configuration"""

    # Money
    currency: str = "DOP"

    # Financing defaults (the store's usual offer)
    default_monthly_rate: str = "0.05"  # 5% per month
    default_term: int = 6
    min_term: int = 2
    max_term: int = 48

    # Collections policy
    grace_period_days: int = 0  # Days past due before a loan counts as atrasado

    # Payment rules
    overpay_tolerance: str = "0.00"  # Excess accepted over a scheduled payment
    receivable_notes_max_length: int = 500

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="RETAIL_CREDIT_",
        env_file=".env",
        case_sensitive=False,
    )

    @property
    def currency_enum(self) -> Currency:
        return Currency[self.currency.upper()]

    @property
    def monthly_rate(self) -> Decimal:
        return Decimal(self.default_monthly_rate)

    @property
    def overpay_tolerance_amount(self) -> Decimal:
        return Decimal(self.overpay_tolerance)


# Global configuration instance
config = FinancingConfig()


def get_config() -> FinancingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> FinancingConfig:
    """Reload configuration from environment"""
    global config
    config = FinancingConfig()
    return config
