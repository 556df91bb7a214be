"""DuckDB cache store."""
from whop_analytics.store.base import BaseStore
from whop_analytics.store.duckdb_store import DuckDBStore
from whop_analytics.store.metrics_repo import MetricsMixin, MembershipFilter
from whop_analytics.store.sync_repo import SyncMixin

__all__ = [
    "BaseStore",
    "DuckDBStore",
    "MembershipFilter",
    "MetricsMixin",
    "SyncMixin",
]
