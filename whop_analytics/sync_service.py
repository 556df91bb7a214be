"""
Sync service for keeping the DuckDB cache in sync with the Whop API.

A sync is skipped while cached data is younger than the freshness window
(default 1 hour), which keeps page loads from hammering the upstream API.
Otherwise receipts and members are fetched concurrently, normalized and
upserted concurrently, and the company's last-sync time is advanced.

Failure policy: sync() never raises. Every error becomes a failed
SyncResult. Upserts already finished by a sibling branch stay written.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Dict, Any, Optional, Tuple

from whop_analytics.config import config
from whop_analytics.exceptions import (
    AnalyticsError,
    StoreError,
    UpstreamFetchError,
    ValidationError,
    WhopConnectionError,
)
from whop_analytics.interfaces import CommerceAPI, SyncStore
from whop_analytics.models import (
    Membership,
    Payment,
    Product,
    SyncResult,
    SyncStatus,
    UpstreamMember,
    UpstreamPayment,
    extract_products,
    utc_now,
)
from whop_analytics.observability import get_logger, Timer, correlation_context, metrics
from whop_analytics.validators import validate_company_id

logger = get_logger(__name__)


def normalize_payments(
    nodes: List[Dict[str, Any]], company_id: str
) -> Tuple[List[UpstreamPayment], List[Payment]]:
    """Parse receipt nodes. Nodes without an id are dropped."""
    upstream = [UpstreamPayment.from_api(node) for node in nodes if node.get("id")]
    dropped = len(nodes) - len(upstream)
    if dropped:
        logger.warning(f"Dropped {dropped} receipts without id", extra={"company_id": company_id})
    return upstream, [p.to_payment(company_id) for p in upstream]


def normalize_members(nodes: List[Dict[str, Any]], company_id: str) -> List[Membership]:
    """Parse member nodes into memberships. Members without an id are dropped."""
    memberships = []
    for node in nodes:
        member = UpstreamMember.from_api(node)
        if member is not None:
            memberships.append(member.to_membership(company_id))
    dropped = len(nodes) - len(memberships)
    if dropped:
        logger.warning(f"Dropped {dropped} members without id", extra={"company_id": company_id})
    return memberships


class SyncService:
    """
    Coordinates upstream fetches and cache upserts for one company at a time.

    Usage:
        service = SyncService(store, client)
        result = await service.sync("biz_123")
        if not result.success:
            logger.warning(result.error)
    """

    def __init__(
        self,
        store: SyncStore,
        client: CommerceAPI,
        clock: Callable[[], datetime] = utc_now,
        freshness_seconds: Optional[int] = None,
    ):
        self.store = store
        self.client = client
        self.clock = clock
        if freshness_seconds is None:
            freshness_seconds = config.sync.freshness_seconds
        self.freshness = timedelta(seconds=freshness_seconds)

    def _is_fresh(self, last_sync: Optional[datetime], now: datetime) -> bool:
        return last_sync is not None and last_sync > now - self.freshness

    async def sync(self, company_id: str, force: bool = False) -> SyncResult:
        """
        Sync one company's receipts, members and products into the cache.

        Args:
            company_id: Whop company ID (biz_...)
            force: Ignore the freshness window

        Returns:
            SyncResult with counts; success=False and error set on failure
        """
        with correlation_context():
            logger.info(
                f"Starting sync for company {company_id}",
                extra={"company_id": company_id, "force": force}
            )
            try:
                with Timer("sync", logger, warn_ms=30000, record=True) as timer:
                    result = await self._sync(company_id, force)
                if not result.skipped:
                    logger.info(
                        f"Sync completed: {result.payments_count} payments, "
                        f"{result.memberships_count} memberships, {result.products_count} products",
                        extra={"company_id": company_id, "duration_ms": round(timer.elapsed_ms, 2)}
                    )
                return result

            except ValidationError as e:
                logger.warning(f"Sync rejected: {e}")
                return SyncResult.failed(str(e))

            except WhopConnectionError as e:
                logger.warning(f"Sync connection error: {e}", extra={"company_id": company_id})
                metrics.record_error("sync_upstream")
                return SyncResult.failed(str(e))

            except UpstreamFetchError as e:
                logger.error(f"Sync upstream error: {e}", extra={"company_id": company_id})
                metrics.record_error("sync_upstream")
                return SyncResult.failed(str(e))

            except StoreError as e:
                logger.error(f"Sync store error: {e}", extra={"company_id": company_id})
                metrics.record_error("sync_store")
                return SyncResult.failed(str(e))

            except AnalyticsError as e:
                logger.error(f"Sync error: {e}", extra={"company_id": company_id})
                metrics.record_error("sync")
                return SyncResult.failed(str(e))

            except Exception as e:
                logger.exception(
                    f"Unexpected sync failure: {e}",
                    extra={"company_id": company_id}
                )
                metrics.record_error("sync_unexpected")
                return SyncResult.failed(str(e) or type(e).__name__)

    async def _sync(self, company_id: str, force: bool) -> SyncResult:
        company_id = validate_company_id(company_id)

        last_sync = await self.store.get_last_sync(company_id)
        now = self.clock()

        if not force and self._is_fresh(last_sync, now):
            minutes_ago = int((now - last_sync).total_seconds() // 60)
            logger.info(
                f"Data is fresh (synced {minutes_ago} minutes ago). Skipping sync.",
                extra={"company_id": company_id}
            )
            return SyncResult(success=True, synced_at=last_sync, skipped=True)

        await self.store.upsert_company(company_id)

        payment_nodes, member_nodes = await asyncio.gather(
            self.client.fetch_payments(company_id),
            self.client.fetch_members(company_id),
        )
        logger.info(
            f"Fetched {len(payment_nodes)} receipts and {len(member_nodes)} members",
            extra={"company_id": company_id}
        )

        upstream_payments, payments = normalize_payments(payment_nodes, company_id)
        memberships = normalize_members(member_nodes, company_id)
        products: List[Product] = extract_products(upstream_payments, company_id, seen_at=now)

        await asyncio.gather(
            self.store.upsert_payments(payments),
            self.store.upsert_memberships(memberships),
            self.store.upsert_products(products),
        )

        synced_at = self.clock()
        await self.store.update_last_sync(company_id, synced_at)

        return SyncResult(
            success=True,
            synced_at=synced_at,
            payments_count=len(payments),
            memberships_count=len(memberships),
            products_count=len(products),
        )

    async def get_sync_status(self, company_id: str) -> SyncStatus:
        """How stale the cached data is. Store errors propagate."""
        last_sync = await self.store.get_last_sync(company_id)
        if last_sync is None:
            return SyncStatus(last_sync=None, needs_sync=True, minutes_since_sync=None)

        now = self.clock()
        return SyncStatus(
            last_sync=last_sync,
            needs_sync=not self._is_fresh(last_sync, now),
            minutes_since_sync=int((now - last_sync).total_seconds() // 60),
        )
