"""
Input validation functions for API parameters.

All validators raise ValidationError on invalid input.
"""
from datetime import date, datetime, timezone
from typing import Optional, Tuple, Union

from whop_analytics.exceptions import ValidationError

# Metric types written by MetricsEngine.record_snapshot
VALID_METRIC_TYPES = {"daily_revenue", "active_members", "churn_rate", "mrr"}

MAX_RANGE_DAYS = 3660


def validate_company_id(value: Optional[str], field: str = "company_id") -> str:
    """
    Validate a Whop company ID.

    Returns:
        The stripped company ID

    Raises:
        ValidationError: If the ID is missing or blank
    """
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must not be empty", value)
    return value.strip()


def validate_date_string(value: str, field: str = "date") -> Union[date, datetime]:
    """
    Parse a date (YYYY-MM-DD) or an ISO-8601 timestamp.

    Bare dates stay dates so callers can treat them as whole UTC days.
    Timestamps without an offset are taken as UTC.

    Raises:
        ValidationError: If the value cannot be parsed
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    text = value.strip()
    try:
        if len(text) == 10:
            return datetime.strptime(text, "%Y-%m-%d").date()
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            field,
            "Invalid date format. Expected YYYY-MM-DD or ISO-8601",
            value
        )

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def validate_date_range(
    start_date: Optional[str],
    end_date: Optional[str],
    max_days: int = MAX_RANGE_DAYS,
) -> Tuple[Optional[Union[date, datetime]], Optional[Union[date, datetime]]]:
    """
    Validate an optional date range.

    Either bound may be omitted; the metrics engine fills in defaults.

    Raises:
        ValidationError: If a bound is invalid, start is after end,
            or the range is too large
    """
    start = validate_date_string(start_date, "startDate") if start_date else None
    end = validate_date_string(end_date, "endDate") if end_date else None

    if start is not None and end is not None:
        if _as_date(start) > _as_date(end):
            raise ValidationError(
                "date_range",
                "Start date must be before or equal to end date",
                f"{start_date} to {end_date}"
            )

        days_diff = (_as_date(end) - _as_date(start)).days
        if days_diff > max_days:
            raise ValidationError(
                "date_range",
                f"Date range cannot exceed {max_days} days",
                f"{days_diff} days"
            )

    return start, end


def validate_metric_type(value: Optional[str], field: str = "metricType") -> str:
    """Validate a metrics_cache metric type."""
    if not value:
        raise ValidationError(field, "Metric type is required", value)
    if value not in VALID_METRIC_TYPES:
        raise ValidationError(
            field,
            f"Must be one of {', '.join(sorted(VALID_METRIC_TYPES))}",
            value
        )
    return value
