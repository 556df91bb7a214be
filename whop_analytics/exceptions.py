"""
Errors raised by the Whop client, the cache store and the metrics engine.

    AnalyticsError
    ├── UpstreamFetchError         - Whop could not be read
    │   ├── WhopConnectionError    - transport failure; may carry retry_after
    │   ├── WhopAPIError           - HTTP error status or GraphQL `errors`
    │   └── WhopDataError          - payload is not the expected GraphQL shape
    └── StoreError                 - DuckDB read/write failed
        ├── QueryTimeoutError
        └── RecordNotFoundError    - single-row lookup matched nothing

    ValidationError                - bad caller input (HTTP 400)

SyncService turns UpstreamFetchError and StoreError into a failed
SyncResult; MetricsEngine lets StoreError propagate.
"""
from typing import Any


class AnalyticsError(Exception):
    """Base class; `details` is appended to the message when present."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message}: {self.details}" if self.details else self.message


class UpstreamFetchError(AnalyticsError):
    pass


class WhopConnectionError(UpstreamFetchError):
    """Timeout or network failure talking to the Whop GraphQL endpoint."""

    def __init__(self, message: str, details: str = None, retry_after: int = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class WhopAPIError(UpstreamFetchError):
    """
    Whop rejected the request.

    status_code is the HTTP status; GraphQL-level errors arrive with 200.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class WhopDataError(UpstreamFetchError):
    """Whop answered, but not with `data` in the shape the queries ask for."""

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class StoreError(AnalyticsError):
    pass


class QueryTimeoutError(StoreError):
    """A DuckDB statement ran past the store's query timeout."""

    def __init__(self, query: str, timeout: float, details: str = None):
        self.query = query if len(query) <= 200 else query[:200] + "..."
        self.timeout = timeout
        super().__init__(f"Query timed out after {timeout}s", details)


class RecordNotFoundError(StoreError):
    """
    No row for `key` in `table`.

    Usually means "never happened" (a company that was never synced)
    rather than a failure.
    """

    def __init__(self, table: str, key: str):
        self.table = table
        self.key = key
        super().__init__(f"No {table} record", key)


class ValidationError(Exception):
    """A request parameter failed validation."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        suffix = f" (got: {self.value!r})" if self.value is not None else ""
        return f"{self.field}: {self.message}{suffix}"
