"""
Configuration module for loading environment variables.
All tunables for pricing, caching and quota lookups are read from the environment.
"""
import os
from pathlib import Path


def _env_bool(name: str, default: str = "false") -> bool:
    """Read a boolean flag from the environment."""
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration loaded from environment variables."""

    # Azure Retail Prices API (public, unauthenticated)
    PRICING_API_BASE_URL: str = os.getenv(
        "PRICING_API_BASE_URL",
        "https://prices.azure.com/api/retail/prices"
    )
    PRICING_TIMEOUT_SECONDS: float = float(os.getenv("PRICING_TIMEOUT_SECONDS", "30"))
    PRICING_PAGE_SIZE: int = int(os.getenv("PRICING_PAGE_SIZE", "1000"))
    PRICING_MAX_ITEMS: int = int(os.getenv("PRICING_MAX_ITEMS", "10000"))
    PRICING_MAX_CONCURRENCY: int = int(os.getenv("PRICING_MAX_CONCURRENCY", "4"))

    # Pricing cache
    PRICING_CACHE_FILE: str = os.getenv(
        "PRICING_CACHE_FILE",
        str(Path.cwd() / ".pricing-cache.json")
    )
    PRICING_CACHE_TTL_SECONDS: int = int(os.getenv("PRICING_CACHE_TTL_SECONDS", "3600"))  # 1 hour
    PRICING_CACHE_DISABLED: bool = _env_bool("PRICING_CACHE_DISABLED")

    # Deployment defaults
    DEFAULT_PRICING_REGION: str = os.getenv("DEFAULT_PRICING_REGION", "eastus")
    DEFAULT_CURRENCY: str = "USD"  # Single-currency scope

    # Azure Resource Manager (quota usages)
    ARM_BASE_URL: str = os.getenv("ARM_BASE_URL", "https://management.azure.com").rstrip("/")
    ARM_SCOPE: str = os.getenv("ARM_SCOPE", "https://management.azure.com/.default")
    QUOTA_TIMEOUT_MS: int = int(os.getenv("QUOTA_TIMEOUT_MS", "8000"))

    HOURS_PER_DAY: int = 24
    HOURS_PER_MONTH: int = 24 * 30  # Billing month assumption used by all period totals

    @classmethod
    def validate(cls) -> None:
        """
        Validates that configuration values are usable.

        Raises:
            ValueError: If any configuration value is missing or invalid.
        """
        if not cls.PRICING_API_BASE_URL.startswith(("http://", "https://")):
            raise ValueError(
                f"PRICING_API_BASE_URL must be a valid URL (got: {cls.PRICING_API_BASE_URL})"
            )
        if not cls.ARM_BASE_URL.startswith(("http://", "https://")):
            raise ValueError(f"ARM_BASE_URL must be a valid URL (got: {cls.ARM_BASE_URL})")
        if cls.PRICING_CACHE_TTL_SECONDS <= 0:
            raise ValueError("PRICING_CACHE_TTL_SECONDS must be positive")
        if cls.PRICING_PAGE_SIZE <= 0 or cls.PRICING_MAX_ITEMS <= 0:
            raise ValueError("PRICING_PAGE_SIZE and PRICING_MAX_ITEMS must be positive")
        if cls.PRICING_MAX_CONCURRENCY <= 0:
            raise ValueError("PRICING_MAX_CONCURRENCY must be positive")
        if cls.QUOTA_TIMEOUT_MS <= 0:
            raise ValueError("QUOTA_TIMEOUT_MS must be positive")
        if not cls.DEFAULT_PRICING_REGION:
            raise ValueError("DEFAULT_PRICING_REGION is required")


config = Config()
