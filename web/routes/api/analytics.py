"""Dashboard analytics endpoint: sync (when stale), then summarize."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import ORJSONResponse
from typing import Optional

from whop_analytics.config import config
from whop_analytics.exceptions import AnalyticsError, ValidationError
from whop_analytics.metrics import MetricsEngine
from whop_analytics.observability import get_logger
from whop_analytics.sync_service import SyncService
from whop_analytics.validators import validate_date_range
from web.schemas import AnalyticsResponse
from ._deps import limiter, get_engine, get_sync_service, get_company_id

router = APIRouter()
logger = get_logger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


@router.get("/analytics", response_model=AnalyticsResponse)
@limiter.limit(config.web.analytics_rate_limit)
async def get_analytics(
    request: Request,
    start_date: Optional[str] = Query(None, alias="startDate", description="Start date (YYYY-MM-DD or ISO-8601)"),
    end_date: Optional[str] = Query(None, alias="endDate", description="End date (YYYY-MM-DD or ISO-8601)"),
    sync_service: SyncService = Depends(get_sync_service),
    engine: MetricsEngine = Depends(get_engine),
    company_id: str = Depends(get_company_id),
):
    """
    Dashboard metrics for the configured company.

    Syncs first (skipped while cached data is under an hour old). A failed
    sync does not block the response; the previous sync time is reported.
    """
    try:
        start, end = validate_date_range(start_date, end_date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        sync_result = await sync_service.sync(company_id)
        last_synced = sync_result.synced_at
        if not sync_result.success:
            logger.warning(
                f"Serving cached analytics after failed sync: {sync_result.error}",
                extra={"company_id": company_id}
            )
            last_synced = (await sync_service.get_sync_status(company_id)).last_sync

        summary = await engine.summarize(company_id, start, end)

    except AnalyticsError as e:
        logger.error(f"Analytics API error: {e}", extra={"company_id": company_id})
        return ORJSONResponse(
            status_code=500,
            content={"error": "Failed to fetch analytics", "message": str(e)},
        )
    except Exception as e:
        logger.exception(f"Unexpected analytics error: {e}")
        return ORJSONResponse(
            status_code=500,
            content={"error": "Failed to fetch analytics", "message": str(e) or "Unknown error"},
        )

    return {
        "success": True,
        "data": summary.to_dict(),
        "sync": {
            "success": sync_result.success,
            "lastSynced": _iso(last_synced),
            "paymentsCount": sync_result.payments_count,
            "membershipsCount": sync_result.memberships_count,
            "productsCount": sync_result.products_count,
            "skipped": sync_result.skipped,
            "error": sync_result.error,
        },
        "dateRange": {
            "start": _iso(start),
            "end": _iso(end),
        },
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }
