"""
Tests for whop_analytics.validators module.
"""
import pytest
from datetime import date, datetime, timezone

from whop_analytics.validators import (
    validate_company_id,
    validate_date_string,
    validate_date_range,
    validate_metric_type,
)
from whop_analytics.exceptions import ValidationError


class TestValidateCompanyId:
    """Tests for validate_company_id function."""

    def test_valid_id(self):
        """Valid ID is returned stripped."""
        assert validate_company_id("  biz_123 ") == "biz_123"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_rejects_blank_or_non_string(self, value):
        """Blank, missing and non-string IDs are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validate_company_id(value)
        assert exc_info.value.field == "company_id"


class TestValidateDateString:
    """Tests for validate_date_string function."""

    def test_valid_date(self):
        """Bare date string returns a date object."""
        result = validate_date_string("2026-01-15")
        assert result == date(2026, 1, 15)
        assert not isinstance(result, datetime)

    def test_iso_timestamp_with_z(self):
        """Z-suffixed timestamps are parsed as UTC."""
        result = validate_date_string("2026-01-15T10:30:00Z")
        assert result == datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_naive_timestamp_is_utc(self):
        """Timestamps without an offset are taken as UTC."""
        result = validate_date_string("2026-01-15T10:30:00")
        assert result.tzinfo == timezone.utc
        assert result.hour == 10

    def test_offset_converted_to_utc(self):
        """Offsets are normalized to UTC."""
        result = validate_date_string("2026-01-15T12:00:00+02:00")
        assert result == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_invalid_format(self):
        """Invalid format should raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_string("15-01-2026")
        assert "Invalid date format" in str(exc_info.value)

    def test_invalid_date(self):
        """Invalid date should raise ValidationError."""
        with pytest.raises(ValidationError):
            validate_date_string("2026-02-30")

    def test_empty_string(self):
        """Empty string should raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_string("")
        assert "required" in str(exc_info.value).lower()

    def test_non_string(self):
        """Non-string should raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_string(12345)
        assert "string" in str(exc_info.value).lower()


class TestValidateDateRange:
    """Tests for validate_date_range function."""

    def test_valid_range(self):
        """Valid date range returns both bounds."""
        start, end = validate_date_range("2026-01-01", "2026-01-31")
        assert start == date(2026, 1, 1)
        assert end == date(2026, 1, 31)

    def test_same_day(self):
        """Same start and end date should be valid."""
        start, end = validate_date_range("2026-01-15", "2026-01-15")
        assert start == end == date(2026, 1, 15)

    def test_both_optional(self):
        """Omitted bounds come back as None."""
        assert validate_date_range(None, None) == (None, None)
        start, end = validate_date_range("2026-01-01", None)
        assert start == date(2026, 1, 1)
        assert end is None

    def test_mixed_date_and_timestamp(self):
        """A date and a timestamp can be compared."""
        start, end = validate_date_range("2026-01-01", "2026-01-02T00:00:00Z")
        assert isinstance(end, datetime)

    def test_start_after_end(self):
        """Start date after end date should raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_range("2026-01-31", "2026-01-01")
        assert "before or equal" in str(exc_info.value)
        assert exc_info.value.field == "date_range"

    def test_range_too_large(self):
        """Range over max_days is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_range("2026-01-01", "2026-03-01", max_days=30)
        assert "cannot exceed 30 days" in str(exc_info.value)

    def test_invalid_bound_names_field(self):
        """A bad bound reports the query parameter name."""
        with pytest.raises(ValidationError) as exc_info:
            validate_date_range("nope", None)
        assert exc_info.value.field == "startDate"


class TestValidateMetricType:
    """Tests for validate_metric_type function."""

    @pytest.mark.parametrize("value", ["daily_revenue", "active_members", "churn_rate", "mrr"])
    def test_valid_types(self, value):
        """Snapshot metric types are accepted."""
        assert validate_metric_type(value) == value

    def test_unknown_type(self):
        """Unknown types are rejected with the allowed list."""
        with pytest.raises(ValidationError) as exc_info:
            validate_metric_type("ltv")
        assert "daily_revenue" in str(exc_info.value)

    def test_missing(self):
        """Missing type is rejected."""
        with pytest.raises(ValidationError):
            validate_metric_type("")
