"""
Sync repository: company bookkeeping, bulk upserts and the metrics cache.

Upserts are keyed by (company_id, id) so re-running a sync with the same
upstream data never duplicates rows.
"""
import json
from datetime import datetime, date
from typing import Optional, List, Dict, Any

import pandas as pd

from whop_analytics.exceptions import RecordNotFoundError
from whop_analytics.models import Company, Product, Membership, Payment, utc_now
from whop_analytics.observability import get_logger
from whop_analytics.store.base import to_db_timestamp, from_db_timestamp

logger = get_logger(__name__)


def _dedupe(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse duplicate (company_id, id) keys; the last occurrence wins.

    DuckDB refuses to update the same row twice in one statement. Every
    surviving row is stamped with one UTC synced_at for the batch.
    """
    unique: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        unique[(row["company_id"], row["id"])] = row
    synced_at = to_db_timestamp(utc_now())
    for row in unique.values():
        row["synced_at"] = synced_at
    return list(unique.values())


class SyncMixin:
    """Write side of the store, used by SyncService."""

    # ─── Companies ───────────────────────────────────────────────────────────

    async def get_company(self, company_id: str) -> Company:
        """Fetch one company row.

        Raises:
            RecordNotFoundError: If the company has never been synced
        """
        row = await self._fetch_one(
            """
            SELECT id, last_sync, subscription_tier, is_active, created_at
            FROM companies WHERE id = ?
            """,
            [company_id]
        )
        if row is None:
            raise RecordNotFoundError("companies", company_id)
        return Company(
            id=row[0],
            last_sync=from_db_timestamp(row[1]),
            subscription_tier=row[2],
            is_active=bool(row[3]),
            created_at=from_db_timestamp(row[4]),
        )

    async def get_last_sync(self, company_id: str) -> Optional[datetime]:
        """Last successful sync time, or None when the company is unknown."""
        try:
            company = await self.get_company(company_id)
        except RecordNotFoundError:
            return None
        return company.last_sync

    async def upsert_company(self, company_id: str) -> None:
        """Create the company row if it does not exist yet."""
        await self._execute(
            """
            INSERT INTO companies (id, created_at, subscription_tier, is_active)
            VALUES (?, ?, 'free', TRUE)
            ON CONFLICT (id) DO NOTHING
            """,
            [company_id, to_db_timestamp(utc_now())]
        )

    async def update_last_sync(self, company_id: str, synced_at: datetime) -> None:
        await self._execute(
            "UPDATE companies SET last_sync = ? WHERE id = ?",
            [to_db_timestamp(synced_at), company_id]
        )

    # ─── Bulk upserts ────────────────────────────────────────────────────────

    async def upsert_products(self, products: List[Product]) -> int:
        """Upsert products. Returns the number of rows written."""
        if not products:
            return 0

        rows = _dedupe([p.to_row() for p in products])
        for row in rows:
            row["created_at"] = to_db_timestamp(row["created_at"])
            row["metadata"] = json.dumps(row["metadata"], default=str)

        def _upsert(conn):
            df = pd.DataFrame(rows)
            conn.register("products_batch", df)
            try:
                conn.execute("""
                    INSERT INTO products (id, company_id, name, created_at, metadata, synced_at)
                    SELECT
                        CAST(id AS VARCHAR), CAST(company_id AS VARCHAR), CAST(name AS VARCHAR),
                        CAST(created_at AS TIMESTAMP), CAST(metadata AS VARCHAR), CAST(synced_at AS TIMESTAMP)
                    FROM products_batch
                    ON CONFLICT (company_id, id) DO UPDATE SET
                        name = excluded.name,
                        metadata = excluded.metadata,
                        synced_at = excluded.synced_at
                """)
            finally:
                conn.unregister("products_batch")

        await self._run(_upsert, "upsert_products")
        logger.info(f"Upserted {len(rows)} products")
        return len(rows)

    async def upsert_memberships(self, memberships: List[Membership]) -> int:
        """Upsert memberships. Returns the number of rows written."""
        if not memberships:
            return 0

        rows = _dedupe([m.to_row() for m in memberships])
        for row in rows:
            for key in ("created_at", "expires_at", "renewal_period_start", "renewal_period_end"):
                row[key] = to_db_timestamp(row[key])

        def _upsert(conn):
            df = pd.DataFrame(rows)
            conn.register("memberships_batch", df)
            try:
                conn.execute("""
                    INSERT INTO memberships (
                        id, company_id, product_id, user_id, status, valid,
                        created_at, expires_at, renewal_period_start, renewal_period_end,
                        cancel_at_period_end, synced_at
                    )
                    SELECT
                        CAST(id AS VARCHAR), CAST(company_id AS VARCHAR),
                        CAST(product_id AS VARCHAR), CAST(user_id AS VARCHAR),
                        CAST(status AS VARCHAR), CAST(valid AS BOOLEAN),
                        CAST(created_at AS TIMESTAMP), CAST(expires_at AS TIMESTAMP),
                        CAST(renewal_period_start AS TIMESTAMP), CAST(renewal_period_end AS TIMESTAMP),
                        CAST(cancel_at_period_end AS BOOLEAN), CAST(synced_at AS TIMESTAMP)
                    FROM memberships_batch
                    ON CONFLICT (company_id, id) DO UPDATE SET
                        product_id = excluded.product_id,
                        user_id = excluded.user_id,
                        status = excluded.status,
                        valid = excluded.valid,
                        created_at = excluded.created_at,
                        expires_at = excluded.expires_at,
                        renewal_period_start = excluded.renewal_period_start,
                        renewal_period_end = excluded.renewal_period_end,
                        cancel_at_period_end = excluded.cancel_at_period_end,
                        synced_at = excluded.synced_at
                """)
            finally:
                conn.unregister("memberships_batch")

        await self._run(_upsert, "upsert_memberships")
        logger.info(f"Upserted {len(rows)} memberships")
        return len(rows)

    async def upsert_payments(self, payments: List[Payment]) -> int:
        """Upsert payments. Returns the number of rows written."""
        if not payments:
            return 0

        rows = _dedupe([p.to_row() for p in payments])
        for row in rows:
            for key in ("created_at", "paid_at", "refunded_at"):
                row[key] = to_db_timestamp(row[key])

        def _upsert(conn):
            df = pd.DataFrame(rows)
            conn.register("payments_batch", df)
            try:
                conn.execute("""
                    INSERT INTO payments (
                        id, company_id, product_id, membership_id, user_id, status,
                        final_amount, currency, created_at, paid_at, refunded_at, synced_at
                    )
                    SELECT
                        CAST(id AS VARCHAR), CAST(company_id AS VARCHAR),
                        CAST(product_id AS VARCHAR), CAST(membership_id AS VARCHAR),
                        CAST(user_id AS VARCHAR), CAST(status AS VARCHAR),
                        CAST(final_amount AS BIGINT), CAST(currency AS VARCHAR),
                        CAST(created_at AS TIMESTAMP), CAST(paid_at AS TIMESTAMP),
                        CAST(refunded_at AS TIMESTAMP), CAST(synced_at AS TIMESTAMP)
                    FROM payments_batch
                    ON CONFLICT (company_id, id) DO UPDATE SET
                        product_id = excluded.product_id,
                        membership_id = excluded.membership_id,
                        user_id = excluded.user_id,
                        status = excluded.status,
                        final_amount = excluded.final_amount,
                        currency = excluded.currency,
                        created_at = excluded.created_at,
                        paid_at = excluded.paid_at,
                        refunded_at = excluded.refunded_at,
                        synced_at = excluded.synced_at
                """)
            finally:
                conn.unregister("payments_batch")

        await self._run(_upsert, "upsert_payments")
        logger.info(f"Upserted {len(rows)} payments")
        return len(rows)

    # ─── Metrics cache (non-authoritative snapshots) ─────────────────────────

    async def cache_metric(
        self,
        company_id: str,
        day: date,
        metric_type: str,
        value: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Store one metric snapshot, replacing any value for the same day."""
        await self._execute(
            """
            INSERT INTO metrics_cache (company_id, date, metric_type, value, metadata, computed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (company_id, date, metric_type) DO UPDATE SET
                value = excluded.value,
                metadata = excluded.metadata,
                computed_at = excluded.computed_at
            """,
            [
                company_id,
                day,
                metric_type,
                float(value),
                json.dumps(metadata, default=str) if metadata is not None else None,
                to_db_timestamp(utc_now()),
            ]
        )

    async def get_cached_metrics(
        self,
        company_id: str,
        metric_type: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Cached snapshots for one metric, ascending by date."""
        conditions = ["company_id = ?", "metric_type = ?"]
        params: list = [company_id, metric_type]
        if start is not None:
            conditions.append("date >= ?")
            params.append(start)
        if end is not None:
            conditions.append("date <= ?")
            params.append(end)

        rows = await self._fetch_all(
            f"""
            SELECT date, metric_type, value, metadata, computed_at
            FROM metrics_cache
            WHERE {' AND '.join(conditions)}
            ORDER BY date ASC
            """,
            params
        )
        return [
            {
                "date": row[0].isoformat(),
                "metric_type": row[1],
                "value": row[2],
                "metadata": json.loads(row[3]) if row[3] else None,
                "computed_at": from_db_timestamp(row[4]),
            }
            for row in rows
        ]
