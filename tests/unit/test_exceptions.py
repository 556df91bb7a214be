"""
Tests for whop_analytics.exceptions module.
"""
import pytest

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


class TestAnalyticsError:
    """Tests for base AnalyticsError exception."""

    def test_message_only(self):
        """Error with message only."""
        error = AnalyticsError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        """Error with message and details."""
        error = AnalyticsError("Failed to fetch", "Connection timeout")
        assert str(error) == "Failed to fetch: Connection timeout"
        assert error.details == "Connection timeout"


class TestUpstreamErrors:
    """Tests for the Whop API error family."""

    @pytest.mark.parametrize("cls", [WhopConnectionError, WhopAPIError, WhopDataError])
    def test_inheritance(self, cls):
        """Every upstream error is an UpstreamFetchError and an AnalyticsError."""
        error = cls("failed")
        assert isinstance(error, UpstreamFetchError)
        assert isinstance(error, AnalyticsError)
        assert not isinstance(error, StoreError)

    def test_retry_after(self):
        """Connection errors carry an optional retry hint."""
        assert WhopConnectionError("Timed out", retry_after=5).retry_after == 5
        assert WhopConnectionError("Failed").retry_after is None

    def test_status_code(self):
        """API errors carry the HTTP status."""
        error = WhopAPIError("Unauthorized", status_code=401, details="bad key")
        assert error.status_code == 401
        assert str(error) == "Unauthorized: bad key"

    def test_expected_got(self):
        """Data errors describe the contract violation."""
        error = WhopDataError("Type mismatch", expected="list", got="dict")
        assert error.expected == "list"
        assert error.got == "dict"


class TestStoreErrors:
    """Tests for cache store errors."""

    def test_query_timeout(self):
        """Timeout keeps a truncated query and the limit."""
        error = QueryTimeoutError("SELECT " + "x" * 300, 30.0)
        assert isinstance(error, StoreError)
        assert error.timeout == 30.0
        assert error.query.endswith("...")
        assert len(error.query) == 203
        assert "30.0s" in str(error)

    def test_record_not_found(self):
        """Not-found names the table and key."""
        error = RecordNotFoundError("companies", "biz_missing")
        assert isinstance(error, StoreError)
        assert error.table == "companies"
        assert error.key == "biz_missing"
        assert str(error) == "No companies record: biz_missing"


class TestValidationError:
    """Tests for ValidationError exception."""

    def test_not_analytics_error(self):
        """Should NOT inherit from AnalyticsError."""
        error = ValidationError("company_id", "must not be empty")
        assert not isinstance(error, AnalyticsError)

    def test_field_and_message(self):
        """Should have field and message."""
        error = ValidationError("startDate", "Invalid format")
        assert error.field == "startDate"
        assert error.message == "Invalid format"
        assert str(error) == "startDate: Invalid format"

    def test_with_value(self):
        """Should include value in string representation."""
        error = ValidationError("company_id", "must not be empty", value="   ")
        assert "'   '" in str(error)

    def test_none_value(self):
        """None value should not be shown."""
        error = ValidationError("name", "Required")
        assert error.value is None
        assert "None" not in str(error)
