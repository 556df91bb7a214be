"""
FastAPI web application for Whop Analytics.

The lifespan owns every long-lived component: it opens the DuckDB store
and the Whop client, wires SyncService and MetricsEngine to them, starts
the background scheduler and tears everything down on shutdown.
Components passed to create_app() are used as-is and left open.
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from whop_analytics.config import VERSION, config, validate_config, ConfigurationError
from whop_analytics.exceptions import AnalyticsError
from whop_analytics.interfaces import CacheStore, CommerceAPI
from whop_analytics.metrics import MetricsEngine
from whop_analytics.observability import configure_logging, get_logger
from whop_analytics.scheduler import BackgroundScheduler
from whop_analytics.store import DuckDBStore
from whop_analytics.sync_service import SyncService
from whop_analytics.whop_client import WhopClient
from web.middleware import RequestContextMiddleware
from web.routes.api import router as api_router
from web.routes.api._deps import limiter

configure_logging()
logger = get_logger(__name__)


def create_app(
    store: Optional[CacheStore] = None,
    client: Optional[CommerceAPI] = None,
    company_id: Optional[str] = None,
    enable_scheduler: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        store: Cache store to use (default: DuckDBStore at DUCKDB_PATH)
        client: Upstream client to use (default: WhopClient from env)
        company_id: Company to serve (default: WHOP_COMPANY_ID)
        enable_scheduler: Start the background sync/snapshot jobs
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Whop Analytics starting...")

        # Fail fast with clear errors
        try:
            validate_config(require_api=client is None or company_id is None)
            logger.info("Configuration validated")
        except ConfigurationError as e:
            logger.critical(f"Configuration error: {e}")
            raise SystemExit(1)

        app_store = store if store is not None else DuckDBStore()
        app_client = client if client is not None else WhopClient()
        if store is None:
            await app_store.connect()
        if client is None:
            await app_client.connect()

        app.state.store = app_store
        app.state.client = app_client
        app.state.company_id = company_id or config.api.company_id
        app.state.sync_service = SyncService(app_store, app_client)
        app.state.engine = MetricsEngine(app_store)
        app.state.scheduler = None

        if enable_scheduler:
            app.state.scheduler = BackgroundScheduler(
                app.state.sync_service, app.state.engine, app.state.company_id
            )
            app.state.scheduler.start()

        logger.info(f"Serving analytics for {app.state.company_id}")
        try:
            yield
        finally:
            if app.state.scheduler:
                app.state.scheduler.shutdown()
            if client is None:
                await app_client.close()
            if store is None:
                await app_store.close()
            logger.info("Whop Analytics stopped")

    app = FastAPI(
        title="Whop Analytics",
        description="Revenue, churn and customer metrics for a Whop company",
        version=VERSION,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
        return ORJSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "message": "Too many requests. Please try again later.",
                "retry_after": exc.detail,
            }
        )

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        logger.error(f"Request failed: {exc}", extra={"path": request.url.path})
        return ORJSONResponse(
            status_code=500,
            content={"error": type(exc).__name__, "message": str(exc)},
        )

    app.add_middleware(RequestContextMiddleware)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run("web.main:app", host=config.web.host, port=config.web.port)
