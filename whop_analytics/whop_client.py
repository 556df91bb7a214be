"""
Async GraphQL client for the Whop API.

Features:
- One pooled httpx.AsyncClient per WhopClient
- Cursor pagination over `nodes` / `pageInfo` connections
- Circuit breaker (opens after 5 consecutive failures)
- Optional exponential backoff retry (WHOP_RETRY_ATTEMPTS, default 1 = none)
- Forwards the current correlation ID as X-Request-ID
"""
from typing import Dict, List, Any, Optional

import httpx

from whop_analytics.config import config
from whop_analytics.exceptions import WhopAPIError, WhopConnectionError, WhopDataError
from whop_analytics.observability import get_logger, get_correlation_id, Timer, metrics
from whop_analytics.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryConfig,
    retry_with_backoff,
)

logger = get_logger(__name__)


RECEIPTS_QUERY = """
query ListReceiptsForCompany($companyId: ID!, $first: Int!, $after: String) {
  company(id: $companyId) {
    receipts(first: $first, after: $after, filter: {}) {
      nodes {
        id
        status
        finalAmount
        currency
        createdAt
        paidAt
        refundedAt
        accessPass { id name title visibility stock initialStock }
        membership { id }
        member { user { id } }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

MEMBERS_QUERY = """
query ListMembers($companyId: ID!, $first: Int!, $after: String) {
  company(id: $companyId) {
    members(first: $first, after: $after, filters: {}) {
      nodes {
        id
        status
        valid
        createdAt
        expiresAt
        renewalPeriodStart
        renewalPeriodEnd
        cancelAtPeriodEnd
        accessPasses { id }
        user { id }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""


class WhopClient:
    """
    Async client for the Whop GraphQL API.

    Usage:
        async with WhopClient() as client:
            receipts = await client.fetch_payments("biz_123")

        # Or with manual lifecycle:
        client = WhopClient()
        await client.connect()
        try:
            members = await client.fetch_members("biz_123")
        finally:
            await client.close()
    """

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        page_size: int = None,
        max_pages: int = None,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize Whop client.

        Args:
            api_key: Whop API key (defaults to WHOP_API_KEY)
            base_url: GraphQL endpoint (defaults to WHOP_API_URL)
            timeout: Request timeout in seconds
            page_size: Nodes requested per page
            max_pages: Hard stop for runaway pagination
            retry_config: Retry policy (defaults to WHOP_RETRY_ATTEMPTS attempts)
            circuit_breaker: Shared breaker (defaults to a per-client one)
        """
        self.api_key = api_key or config.api.key
        self.base_url = base_url or config.api.base_url
        self.timeout = timeout or config.api.request_timeout
        self.page_size = page_size or config.api.page_size
        self.max_pages = max_pages or config.api.max_pages
        self.retry_config = retry_config or RetryConfig(max_attempts=config.api.retry_attempts)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            config=CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0)
        )
        self._client: Optional[httpx.AsyncClient] = None

        if not self.api_key:
            raise ValueError("WHOP_API_KEY is required")

    @property
    def headers(self) -> Dict[str, str]:
        """Bearer auth plus JSON content negotiation for GraphQL POSTs."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Open the pooled httpx client (called lazily on first request)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                )
            )

    async def close(self) -> None:
        """Release pooled connections; safe to call twice."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WhopClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, operation: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one GraphQL operation with circuit breaker and retry.

        Returns:
            The response's `data` object

        Raises:
            WhopConnectionError: Network/timeout errors
            WhopAPIError: HTTP error status or GraphQL errors
            WhopDataError: Response is not a GraphQL payload
            CircuitOpenError: Circuit breaker is open
        """
        await self.circuit_breaker.ensure_closed(operation)

        try:
            result = await retry_with_backoff(
                self._do_request,
                operation, query, variables,
                config=self.retry_config,
                retryable_exceptions=(WhopConnectionError,),
            )
            await self.circuit_breaker.record_success()
            return result

        except (WhopAPIError, WhopConnectionError):
            await self.circuit_breaker.record_failure()
            metrics.record_error(f"whop_{operation}")
            raise

    async def _do_request(self, operation: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a single GraphQL POST (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"whop_{operation}", logger, record=True):
                response = await self._client.request(
                    method="POST",
                    url=self.base_url,
                    json={"query": query, "variables": variables},
                    headers=request_headers if request_headers else None,
                )

        except httpx.TimeoutException as e:
            logger.error(
                f"Request timeout: {operation}",
                extra={"operation": operation, "timeout": self.timeout}
            )
            raise WhopConnectionError(
                f"Request timeout after {self.timeout}s",
                retry_after=5
            ) from e

        except httpx.RequestError as e:
            logger.error(
                f"Request failed: {operation} - {e}",
                extra={"operation": operation, "error": str(e)}
            )
            raise WhopConnectionError(str(e)) from e

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"operation": operation, "status_code": response.status_code}
            )
            raise WhopAPIError(
                f"API returned {response.status_code}",
                status_code=response.status_code,
                details=error_text
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise WhopDataError(
                f"{operation} returned non-JSON body",
                details=response.text[:200],
                expected="JSON object",
                got="text",
            ) from e

        if not isinstance(payload, dict):
            raise WhopDataError(
                f"{operation} returned unexpected payload",
                expected="object",
                got=type(payload).__name__,
            )

        errors = payload.get("errors")
        if errors:
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in errors
            )
            raise WhopAPIError(
                f"{operation} returned GraphQL errors",
                status_code=response.status_code,
                details=messages[:500]
            )

        return payload.get("data") or {}

    async def _paginate(self, operation: str, query: str, connection: str, company_id: str) -> List[Dict[str, Any]]:
        """
        Walk a cursor-paginated company connection and collect every node.

        Args:
            operation: Name for logs/metrics
            query: GraphQL document with $companyId/$first/$after
            connection: Field under `company` holding nodes/pageInfo
            company_id: Whop company ID
        """
        nodes: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        for page in range(1, self.max_pages + 1):
            data = await self._request(
                operation, query,
                {"companyId": company_id, "first": self.page_size, "after": cursor}
            )

            company = data.get("company")
            if company is None:
                raise WhopDataError(
                    f"{operation}: company {company_id} not found in response",
                    expected="company object",
                    got="null",
                )

            conn = company.get(connection) or {}
            page_nodes = conn.get("nodes") or []
            if not isinstance(page_nodes, list):
                raise WhopDataError(
                    f"{operation}: {connection}.nodes is not a list",
                    expected="list",
                    got=type(page_nodes).__name__,
                )
            nodes.extend(node for node in page_nodes if isinstance(node, dict))

            page_info = conn.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not cursor:
                break
        else:
            logger.warning(
                f"{operation}: stopped after {self.max_pages} pages",
                extra={"company_id": company_id}
            )

        logger.info(
            f"Fetched {len(nodes)} {connection}",
            extra={"company_id": company_id, "pages": page}
        )
        return nodes

    # ═══════════════════════════════════════════════════════════════════════════
    # FETCH METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def fetch_payments(self, company_id: str) -> List[Dict[str, Any]]:
        """All receipts for a company, regardless of status."""
        return await self._paginate("list_receipts", RECEIPTS_QUERY, "receipts", company_id)

    async def fetch_members(self, company_id: str) -> List[Dict[str, Any]]:
        """All members for a company. Membership fields are embedded in each member."""
        return await self._paginate("list_members", MEMBERS_QUERY, "members", company_id)
