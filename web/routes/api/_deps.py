"""Shared dependencies for API route modules."""
import time

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from whop_analytics.metrics import MetricsEngine
from whop_analytics.sync_service import SyncService
from whop_analytics.store import DuckDBStore

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Track startup time for uptime calculation
START_TIME = time.time()


# Components are built by the application lifespan and kept on app.state.

def get_store(request: Request) -> DuckDBStore:
    return request.app.state.store


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_engine(request: Request) -> MetricsEngine:
    return request.app.state.engine


def get_company_id(request: Request) -> str:
    return request.app.state.company_id
