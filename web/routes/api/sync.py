"""Manual sync trigger and sync status endpoints."""
from fastapi import APIRouter, Depends, Query, Request

from whop_analytics.config import config
from whop_analytics.sync_service import SyncService
from web.schemas import SyncResultResponse, SyncStatusResponse
from ._deps import limiter, get_sync_service, get_company_id

router = APIRouter()


@router.post("/sync", response_model=SyncResultResponse)
@limiter.limit(config.web.sync_rate_limit)
async def trigger_sync(
    request: Request,
    force: bool = Query(False, description="Ignore the one-hour freshness window"),
    sync_service: SyncService = Depends(get_sync_service),
    company_id: str = Depends(get_company_id),
):
    """Sync Whop data into the cache. Failures are reported in the body, not as HTTP errors."""
    result = await sync_service.sync(company_id, force=force)
    return result.to_dict()


@router.get("/sync/status", response_model=SyncStatusResponse)
@limiter.limit(config.web.default_rate_limit)
async def get_sync_status(
    request: Request,
    sync_service: SyncService = Depends(get_sync_service),
    company_id: str = Depends(get_company_id),
):
    status = await sync_service.get_sync_status(company_id)
    return status.to_dict()
