"""
Base store with connection management, schema and timed query helpers.

Domain query methods live in mixins (sync_repo, metrics_repo) that call
the helpers defined here.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Any, Callable, List

import duckdb

from whop_analytics.config import config
from whop_analytics.exceptions import StoreError, QueryTimeoutError
from whop_analytics.observability import get_logger

logger = get_logger(__name__)

IN_MEMORY = ":memory:"


def to_db_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for TIMESTAMP columns."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_timestamp(value: Any) -> Optional[datetime]:
    """Naive UTC from a TIMESTAMP column -> aware UTC datetime."""
    if value is None:
        return None
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


SCHEMA_SQL = """
-- Tenants
CREATE TABLE IF NOT EXISTS companies (
    id VARCHAR PRIMARY KEY,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_sync TIMESTAMP,
    subscription_tier VARCHAR DEFAULT 'free',
    is_active BOOLEAN DEFAULT TRUE
);

-- Access passes referenced by receipts
CREATE TABLE IF NOT EXISTS products (
    id VARCHAR NOT NULL,
    company_id VARCHAR NOT NULL,
    name VARCHAR NOT NULL,
    created_at TIMESTAMP,
    metadata VARCHAR,
    synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS memberships (
    id VARCHAR NOT NULL,
    company_id VARCHAR NOT NULL,
    product_id VARCHAR,
    user_id VARCHAR,
    status VARCHAR NOT NULL,
    valid BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMP,
    expires_at TIMESTAMP,
    renewal_period_start TIMESTAMP,
    renewal_period_end TIMESTAMP,
    cancel_at_period_end BOOLEAN DEFAULT FALSE,
    synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (company_id, id)
);

-- final_amount is integer minor units (cents)
CREATE TABLE IF NOT EXISTS payments (
    id VARCHAR NOT NULL,
    company_id VARCHAR NOT NULL,
    product_id VARCHAR,
    membership_id VARCHAR,
    user_id VARCHAR,
    status VARCHAR NOT NULL,
    final_amount BIGINT NOT NULL DEFAULT 0,
    currency VARCHAR DEFAULT 'usd',
    created_at TIMESTAMP,
    paid_at TIMESTAMP,
    refunded_at TIMESTAMP,
    synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (company_id, id)
);

-- Daily metric snapshots; never read back as the source of truth
CREATE TABLE IF NOT EXISTS metrics_cache (
    company_id VARCHAR NOT NULL,
    date DATE NOT NULL,
    metric_type VARCHAR NOT NULL,
    value DOUBLE NOT NULL,
    metadata VARCHAR,
    computed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (company_id, date, metric_type)
);
"""


class BaseStore:
    """
    DuckDB connection owner.

    All access is serialized by an asyncio.Lock and executed on a
    single-worker thread pool, so blocking DuckDB calls never stall the
    event loop. Every query runs under a timeout; DuckDB errors surface
    as StoreError.

    Usage:
        class PaymentsMixin:
            async def count_payments(self, company_id: str) -> int:
                row = await self._fetch_one(
                    "SELECT COUNT(*) FROM payments WHERE company_id = ?", [company_id]
                )
                return row[0]
    """

    def __init__(self, db_path: Optional[str] = None, query_timeout: Optional[float] = None):
        self.db_path = str(db_path or config.store.db_path)
        self.query_timeout = query_timeout or config.store.query_timeout
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # Serializes all database access
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    @property
    def is_memory(self) -> bool:
        return self.db_path == IN_MEMORY

    async def connect(self) -> None:
        """Open the connection, create the schema and start the worker thread."""
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                try:
                    self._connection = duckdb.connect(self.db_path)
                    # Column defaults cast now() through the session zone
                    self._connection.execute("SET TimeZone = 'UTC'")
                    self._connection.execute(SCHEMA_SQL)
                except duckdb.Error as e:
                    self._connection = None
                    raise StoreError("Failed to open DuckDB", str(e)) from e

                # Single worker - DuckDB connections are not thread-safe
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="duckdb"
                )
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close the connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None

            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    async def __aenter__(self) -> "BaseStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_connection_info(self) -> dict:
        """Get connection info for monitoring."""
        return {
            "status": "active" if self._connection else "not_initialized",
            "total_queries": self._total_queries,
            "db_path": self.db_path,
        }

    @asynccontextmanager
    async def connection(self):
        """Get the connection, connecting lazily. Holds the lock while in use."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _run(
        self,
        fn: Callable[[duckdb.DuckDBPyConnection], Any],
        label: str,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run fn(conn) on the worker thread with a timeout.

        Args:
            fn: Callable receiving the connection
            label: Query text or operation name, used in errors
            timeout: Timeout in seconds (defaults to the store timeout)

        Raises:
            QueryTimeoutError: If the call exceeds the timeout
            StoreError: If DuckDB raises
        """
        timeout = timeout or self.query_timeout
        async with self.connection() as conn:
            self._total_queries += 1
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, fn, conn),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                raise QueryTimeoutError(label, timeout)
            except duckdb.Error as e:
                logger.error(
                    f"DuckDB query failed: {e}",
                    extra={"query": label[:200]}
                )
                raise StoreError("Query failed", str(e)) from e

    async def _execute(self, query: str, params: list = None, timeout: float = None) -> None:
        """Execute a statement (INSERT/UPDATE/DELETE) with timeout."""
        def _do(conn):
            conn.execute(query, params or [])

        await self._run(_do, query, timeout)

    async def _fetch_one(self, query: str, params: list = None, timeout: float = None) -> Optional[tuple]:
        """Execute query and fetch one row with timeout."""
        return await self._run(
            lambda conn: conn.execute(query, params or []).fetchone(), query, timeout
        )

    async def _fetch_all(self, query: str, params: list = None, timeout: float = None) -> List[tuple]:
        """Execute query and fetch all rows with timeout."""
        return await self._run(
            lambda conn: conn.execute(query, params or []).fetchall(), query, timeout
        )

    async def _fetch_scalar(self, query: str, params: list = None, default: Any = 0) -> Any:
        row = await self._fetch_one(query, params)
        if row is None or row[0] is None:
            return default
        return row[0]
