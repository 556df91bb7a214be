"""
Centralized configuration for Whop Analytics.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from whop_analytics.config import config

    api_key = config.api.key
    window = config.sync.freshness_seconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class WhopAPIConfig:
    """Whop API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("WHOP_API_URL", "https://api.whop.com/public-graphql")
    )
    key: str = field(default_factory=lambda: os.getenv("WHOP_API_KEY", ""))
    company_id: str = field(default_factory=lambda: os.getenv("WHOP_COMPANY_ID", ""))
    page_size: int = 50
    max_pages: int = 100
    request_timeout: float = 30.0
    # 1 = no retry; failed upstream calls surface immediately
    retry_attempts: int = field(
        default_factory=lambda: int(os.getenv("WHOP_RETRY_ATTEMPTS", "1"))
    )


@dataclass(frozen=True)
class StoreConfig:
    """DuckDB cache store configuration."""

    db_path: str = field(
        default_factory=lambda: os.getenv(
            "DUCKDB_PATH", str(BASE_DIR / "data" / "analytics.duckdb")
        )
    )
    query_timeout: float = 30.0


@dataclass(frozen=True)
class SyncConfig:
    """Sync coordinator configuration."""

    freshness_seconds: int = field(
        default_factory=lambda: int(os.getenv("SYNC_FRESHNESS_SECONDS", "3600"))
    )
    interval_minutes: int = field(
        default_factory=lambda: int(os.getenv("SYNC_INTERVAL_MINUTES", "60"))
    )
    snapshot_hour_utc: int = 2


@dataclass(frozen=True)
class MetricsConfig:
    """Metric windows and presentation constants."""

    churn_window_days: int = 30
    at_risk_window_days: int = 7
    clv_window_days: int = 90
    clv_fallback_multiplier: int = 12
    max_time_series_days: int = 365
    top_products_limit: int = 5

    segment_colors: Dict[str, str] = field(default_factory=lambda: {
        "new": "#10b981",      # green
        "active": "#3b82f6",   # blue
        "at_risk": "#f59e0b",  # amber
        "churned": "#ef4444",  # red
    })

    def get_color(self, segment: str, default: str = "#999999") -> str:
        """Get chart color for a customer segment."""
        return self.segment_colors.get(segment, default)


@dataclass(frozen=True)
class WebConfig:
    """HTTP API configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("WEB_PORT", "8080")))

    # Rate limiting
    analytics_rate_limit: str = "30/minute"
    sync_rate_limit: str = "10/minute"
    default_rate_limit: str = "60/minute"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    api: WhopAPIConfig = field(default_factory=WhopAPIConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()

VERSION = config.version


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(require_api: bool = True, app_config: AppConfig = None) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Args:
        require_api: If True, validate Whop API key and company ID
        app_config: Config to validate (defaults to the global instance)

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors: List[str] = []

    if require_api and not cfg.api.key:
        errors.append("WHOP_API_KEY is required but not set")

    if require_api and not cfg.api.company_id:
        errors.append("WHOP_COMPANY_ID is required but not set")

    # Whop company IDs look like biz_XXXXXXXX
    if cfg.api.company_id and not cfg.api.company_id.startswith("biz_"):
        errors.append("WHOP_COMPANY_ID appears to be invalid (expected biz_...)")

    if cfg.sync.freshness_seconds < 0:
        errors.append("SYNC_FRESHNESS_SECONDS must not be negative")

    if cfg.api.retry_attempts < 1:
        errors.append("WHOP_RETRY_ATTEMPTS must be at least 1")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
