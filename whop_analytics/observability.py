"""
Observability helpers: structured logging, correlation IDs, timing.

Every log line carries the correlation ID of the unit of work it belongs
to (an HTTP request, a scheduled job or a CLI run), so one sync can be
followed from the route through the Whop client down to the store.

Usage:
    from whop_analytics.observability import configure_logging, get_logger, correlation_context

    configure_logging()               # LOG_LEVEL / LOG_FORMAT from the environment
    logger = get_logger(__name__)

    with correlation_context():
        logger.info("Sync started", extra={"company_id": company_id})
"""
import json
import logging
import os
import time
import uuid
from collections import Counter, deque
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Any, Dict, Deque

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are not user-supplied `extra=` fields
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

# Third-party loggers kept at WARNING unless include_libs is set
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "apscheduler")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def generate_correlation_id() -> str:
    """Short random ID, enough to tell concurrent requests apart in logs."""
    return uuid.uuid4().hex[:8]


class correlation_context:
    """
    Scope a correlation ID to a block.

    Without an explicit ID the ambient one is reused, so a sync started
    from an HTTP request logs under the request's ID; only top-level work
    (scheduler jobs, scripts) gets a fresh one.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or get_correlation_id() or generate_correlation_id()
        self._token = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *exc_info) -> None:
        _correlation_id.reset(self._token)


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════════════════

class _ContextFormatter(logging.Formatter):
    """Collects the fields both output formats share."""

    def fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        extras = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        return {
            "timestamp": datetime.now(timezone.utc),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
            "extras": extras,
            "exception": self.formatException(record.exc_info) if record.exc_info else None,
        }


class StructuredFormatter(_ContextFormatter):
    """One JSON object per line; extras are merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        f = self.fields(record)
        entry: Dict[str, Any] = {
            "timestamp": f["timestamp"].isoformat().replace("+00:00", "Z"),
            "level": f["level"],
            "logger": f["logger"],
            "message": f["message"],
        }
        if f["correlation_id"]:
            entry["correlation_id"] = f["correlation_id"]
        entry.update(f["extras"])
        if f["exception"]:
            entry["exception"] = f["exception"]
        return json.dumps(entry, default=str)


class HumanReadableFormatter(_ContextFormatter):
    """TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE | extras"""

    def format(self, record: logging.LogRecord) -> str:
        f = self.fields(record)
        cid = f" [{f['correlation_id']}]" if f["correlation_id"] else ""
        line = (
            f"{f['timestamp']:%Y-%m-%d %H:%M:%S} - {f['level']:8} - "
            f"{f['logger']}{cid} - {f['message']}"
        )
        if f["extras"]:
            line += f" | {f['extras']}"
        if f["exception"]:
            line += f"\n{f['exception']}"
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Install a single stream handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines instead of human-readable text
        include_libs: Leave third-party loggers at the root level
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))

    if not include_libs:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging() -> None:
    """setup_logging() from LOG_LEVEL and LOG_FORMAT (json|text)."""
    setup_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "text").lower() == "json",
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST / OPERATION STATS
# ═══════════════════════════════════════════════════════════════════════════════

class MetricsCollector:
    """
    In-process counters and recent timing samples, reported by /api/health.

    Not a metrics backend: everything resets on restart.
    """

    def __init__(self, max_samples: int = 100):
        self._max_samples = max_samples
        self._requests: Counter = Counter()
        self._errors: Counter = Counter()
        self._timings: Dict[str, Deque[float]] = {}

    def record_request(self, endpoint: str) -> None:
        self._requests[endpoint] += 1

    def record_error(self, error_type: str) -> None:
        self._errors[error_type] += 1

    def record_timing(self, operation: str, duration_ms: float) -> None:
        samples = self._timings.get(operation)
        if samples is None:
            samples = self._timings[operation] = deque(maxlen=self._max_samples)
        samples.append(duration_ms)

    def get_stats(self) -> Dict[str, Any]:
        timing = {}
        for operation, samples in self._timings.items():
            if not samples:
                continue
            ordered = sorted(samples)
            timing[operation] = {
                "count": len(ordered),
                "avg_ms": round(sum(ordered) / len(ordered), 2),
                "max_ms": round(ordered[-1], 2),
                "p50_ms": round(ordered[len(ordered) // 2], 2),
            }
        return {
            "requests": dict(self._requests),
            "errors": dict(self._errors),
            "timing": timing,
        }

    def reset(self) -> None:
        self._requests.clear()
        self._errors.clear()
        self._timings.clear()


# Process-wide collector
metrics = MetricsCollector()


class Timer:
    """
    Time a block, optionally logging the duration and recording it in `metrics`.

    Usage:
        with Timer("whop_list_receipts", logger, record=True) as t:
            response = await client.post(...)
        t.elapsed_ms

    Durations above warn_ms are logged at WARNING, others at DEBUG.
    """

    def __init__(
        self,
        name: str,
        logger: Optional[logging.Logger] = None,
        warn_ms: float = 1000,
        record: bool = False,
    ):
        self.name = name
        self.logger = logger
        self.warn_ms = warn_ms
        self.record = record
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000

        # Failed blocks are counted as errors by their callers, not timed
        if self.record and exc_type is None:
            metrics.record_timing(self.name, self.elapsed_ms)

        if self.logger:
            level = logging.WARNING if self.elapsed_ms > self.warn_ms else logging.DEBUG
            self.logger.log(
                level,
                f"{self.name} took {self.elapsed_ms:.0f}ms",
                extra={"operation": self.name, "duration_ms": round(self.elapsed_ms, 2)}
            )
