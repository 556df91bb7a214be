"""
Collaborator contracts for SyncService and MetricsEngine.

WhopClient and DuckDBStore satisfy these structurally; tests inject
AsyncMock fakes with the same method names.
"""
from datetime import datetime, date
from typing import Protocol, Optional, List, Dict, Any, Tuple

from whop_analytics.models import Company, Product, Membership, Payment
from whop_analytics.store.metrics_repo import MembershipFilter


class CommerceAPI(Protocol):
    """Upstream commerce API. Raises UpstreamFetchError subclasses."""

    async def fetch_payments(self, company_id: str) -> List[Dict[str, Any]]: ...

    async def fetch_members(self, company_id: str) -> List[Dict[str, Any]]: ...


class SyncStore(Protocol):
    """Write side of the cache store. Raises StoreError subclasses."""

    async def get_company(self, company_id: str) -> Company: ...

    async def get_last_sync(self, company_id: str) -> Optional[datetime]: ...

    async def upsert_company(self, company_id: str) -> None: ...

    async def update_last_sync(self, company_id: str, synced_at: datetime) -> None: ...

    async def upsert_products(self, products: List[Product]) -> int: ...

    async def upsert_memberships(self, memberships: List[Membership]) -> int: ...

    async def upsert_payments(self, payments: List[Payment]) -> int: ...


class MetricsStore(Protocol):
    """Read side of the cache store plus metric snapshots."""

    async def sum_paid_revenue(self, company_id: str, start: datetime, end: datetime) -> int: ...

    async def count_memberships(self, flt: MembershipFilter) -> int: ...

    async def paid_revenue_by_day(self, company_id: str, since: datetime) -> List[Tuple[date, int]]: ...

    async def memberships_created_by_day(self, company_id: str, since: datetime) -> List[Tuple[date, int]]: ...

    async def paid_revenue_by_product(
        self, company_id: str, limit: int
    ) -> List[Tuple[str, Optional[str], int, int]]: ...

    async def count_paying_customers(self, company_id: str) -> int: ...

    async def latest_memberships_of_paying_customers(self, company_id: str) -> List[Membership]: ...

    async def cache_metric(
        self,
        company_id: str,
        day: date,
        metric_type: str,
        value: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    async def get_cached_metrics(
        self,
        company_id: str,
        metric_type: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Dict[str, Any]]: ...


class CacheStore(SyncStore, MetricsStore, Protocol):
    """Everything the application needs from the cache store."""
