"""
Tests for whop_analytics.whop_client module.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from whop_analytics.exceptions import (
    WhopAPIError,
    WhopConnectionError,
    WhopDataError,
)
from whop_analytics.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    RetryConfig,
)
from whop_analytics.whop_client import WhopClient


def _response(payload=None, status_code=200, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = text if text is not None else str(payload)
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def _page(connection, nodes, has_next=False, cursor=None):
    return _response({
        "data": {
            "company": {
                connection: {
                    "nodes": nodes,
                    "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
                }
            }
        }
    })


def _client_with(*responses, **kwargs) -> WhopClient:
    client = WhopClient(api_key="test-key", **kwargs)
    client._client = MagicMock()
    client._client.request = AsyncMock(side_effect=list(responses))
    return client


class TestWhopClient:
    """Tests for WhopClient class."""

    def test_init_with_api_key(self):
        """Should initialize with provided API key and config defaults."""
        client = WhopClient(api_key="test-key", base_url="https://example.test/graphql")
        assert client.api_key == "test-key"
        assert client.base_url == "https://example.test/graphql"
        assert client.retry_config.max_attempts >= 1

    def test_init_without_api_key_raises(self):
        """Should raise error if no API key provided."""
        with patch("whop_analytics.whop_client.config") as mock_config:
            mock_config.api.key = ""
            with pytest.raises(ValueError, match="WHOP_API_KEY is required"):
                WhopClient(api_key=None)

    def test_headers(self):
        """Should generate correct auth headers."""
        headers = WhopClient(api_key="my-secret-key").headers
        assert headers["Authorization"] == "Bearer my-secret-key"
        assert headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Should work as async context manager."""
        client = WhopClient(api_key="test-key")
        async with client:
            assert client._client is not None
        assert client._client is None


class TestPagination:
    """Tests for cursor pagination."""

    @pytest.mark.asyncio
    async def test_single_page(self):
        """Collects nodes from one page."""
        client = _client_with(_page("receipts", [{"id": "pay_1"}, {"id": "pay_2"}]))

        nodes = await client.fetch_payments("biz_1")

        assert [n["id"] for n in nodes] == ["pay_1", "pay_2"]
        client._client.request.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_follows_cursor(self):
        """Passes endCursor as `after` until hasNextPage is false."""
        client = _client_with(
            _page("members", [{"id": "mem_1"}], has_next=True, cursor="c1"),
            _page("members", [{"id": "mem_2"}], has_next=False, cursor="c2"),
            page_size=1,
        )

        nodes = await client.fetch_members("biz_1")

        assert [n["id"] for n in nodes] == ["mem_1", "mem_2"]
        calls = client._client.request.await_args_list
        assert calls[0].kwargs["json"]["variables"] == {"companyId": "biz_1", "first": 1, "after": None}
        assert calls[1].kwargs["json"]["variables"]["after"] == "c1"

    @pytest.mark.asyncio
    async def test_stops_at_max_pages(self):
        """A runaway cursor stops after max_pages requests."""
        client = _client_with(
            _page("receipts", [{"id": "a"}], has_next=True, cursor="c1"),
            _page("receipts", [{"id": "b"}], has_next=True, cursor="c2"),
            max_pages=2,
        )

        nodes = await client.fetch_payments("biz_1")

        assert len(nodes) == 2
        assert client._client.request.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_cursor_stops(self):
        """hasNextPage without a cursor ends pagination."""
        client = _client_with(_page("receipts", [{"id": "a"}], has_next=True, cursor=None))

        nodes = await client.fetch_payments("biz_1")

        assert len(nodes) == 1

    @pytest.mark.asyncio
    async def test_skips_non_dict_nodes(self):
        client = _client_with(_page("receipts", [{"id": "a"}, None, "junk"]))

        nodes = await client.fetch_payments("biz_1")

        assert nodes == [{"id": "a"}]

    @pytest.mark.asyncio
    async def test_null_company_raises(self):
        """Unknown company is a data error, not an empty list."""
        client = _client_with(_response({"data": {"company": None}}))

        with pytest.raises(WhopDataError):
            await client.fetch_payments("biz_missing")

    @pytest.mark.asyncio
    async def test_nodes_not_a_list(self):
        client = _client_with(_response({"data": {"company": {"receipts": {"nodes": {"id": 1}}}}}))

        with pytest.raises(WhopDataError) as exc_info:
            await client.fetch_payments("biz_1")
        assert exc_info.value.expected == "list"


class TestErrorMapping:
    """Tests for HTTP and GraphQL error handling."""

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Should raise WhopAPIError on 4xx/5xx responses."""
        client = _client_with(_response(None, status_code=401, text="Unauthorized"))

        with pytest.raises(WhopAPIError) as exc_info:
            await client.fetch_payments("biz_1")

        assert exc_info.value.status_code == 401
        assert exc_info.value.details == "Unauthorized"

    @pytest.mark.asyncio
    async def test_graphql_errors(self):
        """GraphQL errors in a 200 response are API errors."""
        client = _client_with(_response({"errors": [{"message": "Not authorized"}], "data": None}))

        with pytest.raises(WhopAPIError) as exc_info:
            await client.fetch_members("biz_1")

        assert "Not authorized" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = _client_with(_response(ValueError("bad json"), text="<html>"))

        with pytest.raises(WhopDataError):
            await client.fetch_payments("biz_1")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Timeouts become connection errors with a retry hint."""
        client = _client_with(httpx.ReadTimeout("timed out"))

        with pytest.raises(WhopConnectionError) as exc_info:
            await client.fetch_payments("biz_1")

        assert exc_info.value.retry_after == 5

    @pytest.mark.asyncio
    async def test_network_error(self):
        client = _client_with(httpx.ConnectError("refused"))

        with pytest.raises(WhopConnectionError):
            await client.fetch_payments("biz_1")

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self):
        """Default policy makes a single attempt."""
        client = _client_with(httpx.ConnectError("refused"), retry_config=RetryConfig(max_attempts=1))

        with pytest.raises(WhopConnectionError):
            await client.fetch_payments("biz_1")

        assert client._client.request.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_connection_errors_when_configured(self):
        client = _client_with(
            httpx.ConnectError("refused"),
            _page("receipts", [{"id": "a"}]),
            retry_config=RetryConfig(max_attempts=2, base_delay=0.01),
        )

        nodes = await client.fetch_payments("biz_1")

        assert len(nodes) == 1
        assert client._client.request.await_count == 2

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self):
        """After the threshold, requests fail fast without hitting the network."""
        breaker = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=60))
        client = _client_with(
            _response(None, status_code=500, text="boom"),
            circuit_breaker=breaker,
        )

        with pytest.raises(WhopAPIError):
            await client.fetch_payments("biz_1")
        with pytest.raises(CircuitOpenError):
            await client.fetch_payments("biz_1")

        assert client._client.request.await_count == 1
