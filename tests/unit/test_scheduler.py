"""
Tests for whop_analytics.scheduler module.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED

from whop_analytics.exceptions import AnalyticsError
from whop_analytics.models import SyncResult
from whop_analytics.scheduler import BackgroundScheduler, JobStatus, HISTORY_SIZE


@pytest.fixture
def sync_service(now):
    service = MagicMock()
    service.sync = AsyncMock(return_value=SyncResult(success=True, synced_at=now, payments_count=2))
    return service


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.record_snapshot = AsyncMock(return_value=4)
    return engine


@pytest.fixture
def scheduler(sync_service, engine, company_id):
    return BackgroundScheduler(sync_service, engine, company_id, interval_minutes=15, snapshot_hour_utc=3)


def _event(job_id, code=EVENT_JOB_EXECUTED, retval=None, exception=None):
    event = MagicMock()
    event.code = code
    event.job_id = job_id
    event.scheduled_run_time = datetime.now(timezone.utc)
    event.retval = retval
    event.exception = exception
    return event


class TestJobs:
    """Tests for the job functions."""

    @pytest.mark.asyncio
    async def test_run_sync_respects_freshness(self, scheduler, sync_service, company_id):
        """The periodic job never forces a sync."""
        result = await scheduler._run_sync()

        sync_service.sync.assert_awaited_once_with(company_id, force=False)
        assert result["success"] is True
        assert result["paymentsCount"] == 2

    @pytest.mark.asyncio
    async def test_failed_sync_fails_job(self, scheduler, sync_service):
        """A failed SyncResult is raised so APScheduler records an error."""
        sync_service.sync.return_value = SyncResult.failed("API returned 500")

        with pytest.raises(AnalyticsError, match="API returned 500"):
            await scheduler._run_sync()

    @pytest.mark.asyncio
    async def test_run_snapshot(self, scheduler, engine, company_id):
        result = await scheduler._run_snapshot()

        engine.record_snapshot.assert_awaited_once_with(company_id)
        assert result == {"metrics_written": 4}


class TestLifecycle:
    """Tests for start/shutdown."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, scheduler, company_id):
        scheduler.start()
        try:
            assert scheduler.is_running
            status = scheduler.get_status()
            assert status["company_id"] == company_id
            assert [j["id"] for j in status["jobs"]] == ["sync_company", "metrics_snapshot"]
        finally:
            scheduler.shutdown(wait=False)

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, scheduler):
        scheduler.start()
        try:
            scheduler.start()
            assert len(scheduler.get_jobs()) == 2
        finally:
            scheduler.shutdown(wait=False)

    def test_shutdown_before_start(self, scheduler):
        scheduler.shutdown()
        assert not scheduler.is_running


class TestEventHandlers:
    """Tests for execution bookkeeping."""

    @pytest.mark.asyncio
    async def test_executed_and_error_history(self, scheduler):
        scheduler.start()
        try:
            scheduler._on_event(_event("sync_company", retval={"success": True}))
            scheduler._on_event(_event("sync_company", EVENT_JOB_ERROR, exception=AnalyticsError("Scheduled sync failed", "boom")))

            info = {j["id"]: j for j in scheduler.get_jobs()}["sync_company"]
            assert info["run_count"] == 2
            assert info["error_count"] == 1
            assert info["last_status"] == JobStatus.FAILED.value
            assert "boom" in info["last_error"]

            history = scheduler.get_job_history("sync_company")
            assert [h["status"] for h in history] == ["failed", "success"]
        finally:
            scheduler.shutdown(wait=False)

    @pytest.mark.asyncio
    async def test_missed_job(self, scheduler):
        scheduler.start()
        try:
            scheduler._on_event(_event("metrics_snapshot", EVENT_JOB_MISSED))

            info = {j["id"]: j for j in scheduler.get_jobs()}["metrics_snapshot"]
            assert info["last_status"] == "missed"
            assert scheduler.get_job_history("metrics_snapshot")[0]["status"] == "missed"
        finally:
            scheduler.shutdown(wait=False)

    def test_unknown_job_ignored(self, scheduler):
        scheduler._on_event(_event("unknown"))
        assert scheduler.get_job_history("unknown") == []

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, scheduler):
        scheduler.start()
        try:
            for _ in range(60):
                scheduler._on_event(_event("sync_company"))

            assert len(scheduler.get_job_history("sync_company", limit=100)) == HISTORY_SIZE
            assert scheduler.get_jobs()[0]["run_count"] == 60
        finally:
            scheduler.shutdown(wait=False)
