"""Health check endpoint."""
import time

from fastapi import APIRouter, Request

from whop_analytics.config import VERSION, config
from whop_analytics.exceptions import StoreError
from whop_analytics.observability import get_correlation_id, get_logger, metrics, Timer
from whop_analytics.resilience import CircuitBreaker
from web.schemas import HealthResponse
from ._deps import limiter, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit(config.web.default_rate_limit)
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    store_info = {}
    try:
        with Timer("health_check_db") as timer:
            store_info = await request.app.state.store.get_stats()
        store_info["status"] = "connected"
        store_info["latency_ms"] = round(timer.elapsed_ms, 2)
    except StoreError as e:
        logger.warning(f"Health check store error: {e}")
        store_info = {"status": f"error: {e}"}

    scheduler = getattr(request.app.state, "scheduler", None)
    breaker = getattr(request.app.state.client, "circuit_breaker", None)

    return {
        "status": "healthy" if store_info.get("status") == "connected" else "degraded",
        "version": VERSION,
        "uptimeSeconds": uptime_seconds,
        "correlationId": get_correlation_id(),
        "store": store_info,
        "scheduler": scheduler.get_status() if scheduler else None,
        "upstream": breaker.snapshot() if isinstance(breaker, CircuitBreaker) else None,
        "requests": metrics.get_stats(),
    }
