"""
Request middleware: correlation IDs, access logging, per-route timeouts.

Routes that may run a full Whop sync get a long deadline; everything else
is expected to answer from DuckDB quickly.
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from whop_analytics.observability import get_logger, correlation_context, metrics

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

# Seconds per path; None disables the deadline
ROUTE_TIMEOUTS = {
    "/api/health": None,
    "/api/analytics": 120.0,
    "/api/sync": 120.0,
}

# Polled by dashboards and load balancers; not worth an access log line
QUIET_PATHS = frozenset({"/api/health", "/api/sync/status"})


def timeout_for(path: str) -> Optional[float]:
    return ROUTE_TIMEOUTS.get(path, DEFAULT_TIMEOUT)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Runs each request inside a correlation context (taken from X-Request-ID
    when the caller sends one), bounds it with the route's timeout, and
    records the outcome in the process metrics.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        endpoint = f"{request.method} {path}"
        quiet = path in QUIET_PATHS

        with correlation_context(request.headers.get("X-Request-ID")) as request_id:
            if not quiet:
                client_ip = request.client.host if request.client else "unknown"
                logger.info(f"-> {endpoint}", extra={"client_ip": client_ip})

            started = time.perf_counter()
            try:
                response = await self._call(request, call_next, endpoint, request_id)
            except Exception as e:
                logger.error(
                    f"{endpoint} raised {type(e).__name__}: {e}",
                    extra={"duration_ms": self._since(started)}
                )
                metrics.record_error(type(e).__name__)
                raise

            duration_ms = self._since(started)
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            metrics.record_request(endpoint)
            metrics.record_timing(endpoint, duration_ms)
            if response.status_code >= 400:
                metrics.record_error(f"HTTP_{response.status_code}")

            if not quiet or response.status_code >= 400:
                logger.log(
                    logging.INFO if response.status_code < 400 else logging.WARNING,
                    f"<- {endpoint} {response.status_code}",
                    extra={"status_code": response.status_code, "duration_ms": duration_ms}
                )
            return response

    async def _call(self, request: Request, call_next: Callable, endpoint: str, request_id: str) -> Response:
        timeout = timeout_for(request.url.path)
        if timeout is None:
            return await call_next(request)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{endpoint} timed out after {timeout}s")
            return ORJSONResponse(
                status_code=504,
                content={
                    "error": "Request Timeout",
                    "message": f"Request exceeded {timeout}s timeout",
                    "path": request.url.path,
                    "correlation_id": request_id,
                }
            )

    @staticmethod
    def _since(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)
