"""
DuckDB cache store for Whop analytics.

Holds the normalized raw records (companies, products, memberships,
payments) plus the metrics_cache snapshot table. Metrics are always
recomputed from the raw records.

Domain query methods are organized into mixins:
- SyncMixin: company bookkeeping, bulk upserts, metric snapshots
- MetricsMixin: filtered counts, sums and daily groupings
"""
from typing import Dict, Any

from whop_analytics.store.base import BaseStore
from whop_analytics.store.metrics_repo import MetricsMixin
from whop_analytics.store.sync_repo import SyncMixin


class DuckDBStore(SyncMixin, MetricsMixin, BaseStore):
    """
    Async-compatible DuckDB store.

    Constructed and owned by the process entry point, then injected into
    SyncService and MetricsEngine:

        store = DuckDBStore(":memory:")
        await store.connect()
        service = SyncService(store, client)
    """

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts per table, for the health endpoint."""
        def _collect(conn):
            stats = {}
            for table in ("companies", "products", "memberships", "payments", "metrics_cache"):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            return stats

        stats = await self._run(_collect, "get_stats")
        stats["connection"] = self.get_connection_info()
        return stats
