"""
APScheduler jobs that keep one company's cache warm.

- sync_company: every SYNC_INTERVAL_MINUTES; a no-op while the cache is fresh
- metrics_snapshot: daily at SNAPSHOT_HOUR_UTC, writes headline metrics to metrics_cache

Both jobs run with max_instances=1 and coalesce, so a slow Whop sync never
stacks up behind itself. Outcomes are kept per job for /api/health.
"""
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Deque

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from whop_analytics.config import config
from whop_analytics.exceptions import AnalyticsError
from whop_analytics.metrics import MetricsEngine
from whop_analytics.observability import get_logger, correlation_context
from whop_analytics.sync_service import SyncService

logger = get_logger(__name__)

HISTORY_SIZE = 50


class JobStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


class JobStats:
    """Run counters and the most recent outcomes of one job."""

    def __init__(self, job_id: str, name: str, description: str):
        self.job_id = job_id
        self.name = name
        self.description = description
        self.run_count = 0
        self.error_count = 0
        self.last_run: Optional[datetime] = None
        self.last_status: Optional[JobStatus] = None
        self.last_error: Optional[str] = None
        self.next_run: Optional[datetime] = None
        self.history: Deque[Dict[str, Any]] = deque(maxlen=HISTORY_SIZE)

    def record(self, status: JobStatus, scheduled: Optional[datetime], error: Optional[str] = None) -> None:
        finished = datetime.now(timezone.utc)
        started = scheduled or finished
        self.last_status = status
        if status is not JobStatus.MISSED:
            self.run_count += 1
            self.last_run = finished
        if status is JobStatus.FAILED:
            self.error_count += 1
            self.last_error = error
        self.history.append({
            "started_at": started.isoformat(),
            "finished_at": finished.isoformat(),
            "status": status.value,
            "duration_ms": round((finished - started).total_seconds() * 1000, 2)
            if status is not JobStatus.MISSED else None,
            "error": error,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.job_id,
            "name": self.name,
            "description": self.description,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status.value if self.last_status else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class BackgroundScheduler:
    """
    Periodic sync and daily snapshot for a single company.

    start() needs a running event loop (FastAPI lifespan or asyncio.run).
    """

    def __init__(
        self,
        sync_service: SyncService,
        engine: MetricsEngine,
        company_id: str,
        interval_minutes: Optional[int] = None,
        snapshot_hour_utc: Optional[int] = None,
    ):
        self.sync_service = sync_service
        self.engine = engine
        self.company_id = company_id
        self.interval_minutes = interval_minutes or config.sync.interval_minutes
        self.snapshot_hour_utc = (
            config.sync.snapshot_hour_utc if snapshot_hour_utc is None else snapshot_hour_utc
        )
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._stats: Dict[str, JobStats] = {}

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler already started")
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(
            self._on_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED
        )

        jobs = [
            ("sync_company", "Company Sync", "Refresh cached Whop data when it is stale",
             self._run_sync, IntervalTrigger(minutes=self.interval_minutes)),
            ("metrics_snapshot", "Metrics Snapshot", "Record daily headline metrics into metrics_cache",
             self._run_snapshot, CronTrigger(hour=self.snapshot_hour_utc, minute=0)),
        ]
        for job_id, name, description, func, trigger in jobs:
            self._scheduler.add_job(
                func, trigger=trigger, id=job_id, name=name,
                max_instances=1, coalesce=True, replace_existing=True,
            )
            self._stats[job_id] = JobStats(job_id, name, description)

        self._scheduler.start()
        logger.info(
            f"Scheduler started for {self.company_id}: sync every {self.interval_minutes}m, "
            f"snapshot at {self.snapshot_hour_utc:02d}:00 UTC"
        )

    def shutdown(self, wait: bool = True) -> None:
        if not self.is_running:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    # ─── jobs ─────────────────────────────────────────────────────────────────

    async def _run_sync(self) -> Dict[str, Any]:
        # Raising makes APScheduler report EVENT_JOB_ERROR for a failed sync
        with correlation_context():
            result = await self.sync_service.sync(self.company_id, force=False)
            if not result.success:
                raise AnalyticsError("Scheduled sync failed", result.error)
            return result.to_dict()

    async def _run_snapshot(self) -> Dict[str, Any]:
        with correlation_context():
            written = await self.engine.record_snapshot(self.company_id)
            return {"metrics_written": written}

    # ─── bookkeeping ──────────────────────────────────────────────────────────

    def _on_event(self, event: JobExecutionEvent) -> None:
        stats = self._stats.get(event.job_id)
        if stats is None:
            return

        if event.code == EVENT_JOB_MISSED:
            stats.record(JobStatus.MISSED, None)
            logger.warning(f"Job {event.job_id} missed its run at {event.scheduled_run_time}")
        elif event.code == EVENT_JOB_ERROR:
            error = str(event.exception) if event.exception else "Unknown error"
            stats.record(JobStatus.FAILED, event.scheduled_run_time, error)
            logger.error(f"Job {event.job_id} failed: {error}", extra={"job_id": event.job_id})
        else:
            stats.record(JobStatus.SUCCESS, event.scheduled_run_time)

        job = self._scheduler.get_job(event.job_id) if self._scheduler else None
        if job is not None:
            stats.next_run = job.next_run_time

    # ─── reporting ────────────────────────────────────────────────────────────

    def get_jobs(self) -> List[Dict[str, Any]]:
        return [stats.to_dict() for stats in self._stats.values()]

    def get_job_history(self, job_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest first."""
        stats = self._stats.get(job_id)
        if stats is None:
            return []
        return list(reversed(stats.history))[:limit]

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "company_id": self.company_id,
            "jobs": self.get_jobs(),
        }
