"""Tests for the APScheduler wiring of the pipeline digest."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger

import revops.services.scheduler
from revops.core.config import Settings
from revops.services.scheduler import (
    DIGEST_JOB_ID,
    _run_pipeline_digest,
    start_scheduler,
    stop_scheduler,
)


@pytest.fixture(autouse=True)
def reset_scheduler() -> None:
    revops.services.scheduler._scheduler = None


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_disabled_scheduler_does_nothing(self) -> None:
        with (
            patch(
                "revops.services.scheduler.get_settings",
                return_value=Settings(_env_file=None, ENABLE_SCHEDULER=False),
            ),
            patch("revops.services.scheduler.AsyncIOScheduler") as scheduler_cls,
        ):
            await start_scheduler()

        scheduler_cls.assert_not_called()
        assert revops.services.scheduler._scheduler is None

    @pytest.mark.asyncio
    async def test_enabled_scheduler_registers_weekday_job(self) -> None:
        settings = Settings(_env_file=None, ENABLE_SCHEDULER=True, DIGEST_CRON_HOUR=6)
        with (
            patch("revops.services.scheduler.get_settings", return_value=settings),
            patch("revops.services.scheduler.AsyncIOScheduler") as scheduler_cls,
        ):
            await start_scheduler()

        scheduler = scheduler_cls.return_value
        scheduler_cls.assert_called_once_with(timezone="America/New_York")
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == DIGEST_JOB_ID
        assert kwargs["replace_existing"] is True
        assert isinstance(kwargs["trigger"], CronTrigger)
        scheduler.start.assert_called_once()

        await stop_scheduler()
        scheduler.shutdown.assert_called_once_with(wait=False)
        assert revops.services.scheduler._scheduler is None

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self) -> None:
        await stop_scheduler()
        assert revops.services.scheduler._scheduler is None


class TestScheduledRun:
    @pytest.mark.asyncio
    async def test_job_failure_is_logged_not_raised(self) -> None:
        with (
            patch(
                "revops.services.scheduler.run_pipeline_digest_job",
                AsyncMock(side_effect=RuntimeError("db down")),
            ),
            patch("revops.services.scheduler.logger") as mock_logger,
        ):
            await _run_pipeline_digest()

        mock_logger.exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_job_runs(self) -> None:
        job = AsyncMock(return_value=MagicMock())
        with patch("revops.services.scheduler.run_pipeline_digest_job", job):
            await _run_pipeline_digest()
        job.assert_awaited_once_with()
