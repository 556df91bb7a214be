"""Metric history endpoint, served from daily metrics_cache snapshots."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import Optional

from whop_analytics.config import config
from whop_analytics.exceptions import ValidationError
from whop_analytics.store import DuckDBStore
from whop_analytics.validators import validate_date_range, validate_metric_type
from web.schemas import MetricHistoryResponse
from ._deps import limiter, get_store, get_company_id

router = APIRouter()


def _as_day(value):
    return value.date() if isinstance(value, datetime) else value


@router.get("/metrics/history", response_model=MetricHistoryResponse)
@limiter.limit(config.web.default_rate_limit)
async def get_metric_history(
    request: Request,
    metric_type: str = Query(..., alias="metricType", description="daily_revenue, active_members, churn_rate or mrr"),
    start_date: Optional[str] = Query(None, alias="startDate", description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, alias="endDate", description="End date (YYYY-MM-DD)"),
    store: DuckDBStore = Depends(get_store),
    company_id: str = Depends(get_company_id),
):
    """Daily snapshots recorded by the scheduler. For charts only; values may lag the live metrics."""
    try:
        metric_type = validate_metric_type(metric_type)
        start, end = validate_date_range(start_date, end_date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    rows = await store.get_cached_metrics(
        company_id,
        metric_type,
        _as_day(start) if start else None,
        _as_day(end) if end else None,
    )
    return {
        "metricType": metric_type,
        "points": [
            {
                "date": row["date"],
                "value": row["value"],
                "metadata": row["metadata"],
                "computedAt": row["computed_at"].isoformat() if row["computed_at"] else None,
            }
            for row in rows
        ],
    }
