"""
Whop Analytics core library.

This package contains the sync and metrics pipeline used by the web API
and the background scheduler:
- config: Centralized configuration
- exceptions: Custom exception hierarchy
- models: Upstream input types, cache rows, metric results
- whop_client: Async Whop GraphQL client
- store: DuckDB cache store
- sync_service: Staleness-gated sync from Whop into the cache
- metrics: Derived business metrics
"""

from whop_analytics.exceptions import (
    AnalyticsError,
    UpstreamFetchError,
    WhopConnectionError,
    WhopAPIError,
    WhopDataError,
    StoreError,
    QueryTimeoutError,
    RecordNotFoundError,
    ValidationError,
)

from whop_analytics.models import (
    MetricResult,
    TimePoint,
    ProductMetric,
    CustomerSegment,
    SyncResult,
    SyncStatus,
    DashboardSummary,
)

from whop_analytics.store import DuckDBStore
from whop_analytics.whop_client import WhopClient
from whop_analytics.sync_service import SyncService
from whop_analytics.metrics import MetricsEngine

__all__ = [
    # Exceptions
    "AnalyticsError",
    "UpstreamFetchError",
    "WhopConnectionError",
    "WhopAPIError",
    "WhopDataError",
    "StoreError",
    "QueryTimeoutError",
    "RecordNotFoundError",
    "ValidationError",
    # Results
    "MetricResult",
    "TimePoint",
    "ProductMetric",
    "CustomerSegment",
    "SyncResult",
    "SyncStatus",
    "DashboardSummary",
    # Components
    "DuckDBStore",
    "WhopClient",
    "SyncService",
    "MetricsEngine",
]
