"""
Pydantic response models for API endpoints.

Field names are snake_case in Python and serialized as camelCase, the
shape the dashboard frontend consumes.
"""
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class MetricResultResponse(CamelModel):
    """A metric value with its period-over-period change."""
    value: float
    change: float = Field(0.0, description="Percent change vs. the previous period")


class TimePointResponse(CamelModel):
    """One point of a sparse daily series."""
    date: str = Field(description="UTC date (YYYY-MM-DD)")
    value: float


class ProductMetricResponse(CamelModel):
    """Revenue for one product."""
    product_id: str
    product_name: str
    revenue: float
    count: int


class CustomerSegmentResponse(CamelModel):
    """Paying customers in one segment."""
    segment: str = Field(description="new, active, at_risk or churned")
    count: int
    percentage: float
    color: str


class DashboardResponse(CamelModel):
    """All dashboard metrics for one date range."""
    revenue: MetricResultResponse
    member_count: MetricResultResponse
    churn_rate: float
    arpu: MetricResultResponse
    mrr: MetricResultResponse
    clv: MetricResultResponse
    revenue_time_series: List[TimePointResponse]
    member_growth_time_series: List[TimePointResponse] = []
    top_products: List[ProductMetricResponse]
    customer_segments: List[CustomerSegmentResponse]
    generated_at: str


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC
# ═══════════════════════════════════════════════════════════════════════════════

class SyncResultResponse(CamelModel):
    """Outcome of a sync call."""
    success: bool
    payments_count: int = 0
    memberships_count: int = 0
    products_count: int = 0
    synced_at: Optional[str] = Field(None, description="Sync time (ISO format)")
    skipped: bool = Field(False, description="True when cached data was still fresh")
    error: Optional[str] = None


class SyncStatusResponse(CamelModel):
    """Freshness of the cached data."""
    last_sync: Optional[str] = Field(None, description="Last sync time (ISO format)")
    needs_sync: bool
    minutes_since_sync: Optional[int] = None


class SyncInfo(CamelModel):
    """Sync summary attached to analytics responses."""
    success: bool
    last_synced: Optional[str] = None
    payments_count: int = 0
    memberships_count: int = 0
    products_count: int = 0
    skipped: bool = False
    error: Optional[str] = None


class DateRange(CamelModel):
    start: Optional[str] = None
    end: Optional[str] = None


class AnalyticsResponse(CamelModel):
    """Response of GET /api/analytics."""
    success: bool
    data: DashboardResponse
    sync: SyncInfo
    date_range: DateRange
    generated_at: str


# ═══════════════════════════════════════════════════════════════════════════════
# METRIC HISTORY
# ═══════════════════════════════════════════════════════════════════════════════

class MetricSnapshotResponse(CamelModel):
    """One cached daily snapshot."""
    date: str
    value: float
    metadata: Optional[Dict[str, Any]] = None
    computed_at: Optional[str] = None


class MetricHistoryResponse(CamelModel):
    metric_type: str
    points: List[MetricSnapshotResponse]


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class HealthResponse(CamelModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    store: Dict[str, Any] = Field(default_factory=dict, description="DuckDB status and row counts")
    scheduler: Optional[Dict[str, Any]] = Field(None, description="Background job status")
    upstream: Optional[Dict[str, Any]] = Field(None, description="Whop circuit breaker state")
    requests: Dict[str, Any] = Field(default_factory=dict, description="In-process request metrics")


class ErrorResponse(BaseModel):
    """Error body for failed requests."""
    error: str
    message: Optional[str] = None
