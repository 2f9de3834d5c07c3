"""Background scheduler for the daily pipeline digest.

Uses APScheduler to run the digest job each weekday morning. Controlled by
the ENABLE_SCHEDULER setting (default off); the job can also be triggered by
an external cron calling ``run_pipeline_digest_job`` directly.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from revops.core.config import get_settings
from revops.jobs.pipeline_digest_job import run_pipeline_digest_job

logger = logging.getLogger(__name__)

DIGEST_JOB_ID = "pipeline_digest"

_scheduler: AsyncIOScheduler | None = None


async def _run_pipeline_digest() -> None:
    try:
        await run_pipeline_digest_job()
    except Exception:
        logger.exception("Pipeline digest scheduler run failed")


async def start_scheduler() -> None:
    """Start the APScheduler background scheduler if enabled."""
    global _scheduler

    settings = get_settings()
    if not settings.ENABLE_SCHEDULER:
        logger.info("Background scheduler disabled (ENABLE_SCHEDULER != true)")
        return

    _scheduler = AsyncIOScheduler(timezone=settings.DIGEST_TIMEZONE)
    _scheduler.add_job(
        _run_pipeline_digest,
        trigger=CronTrigger(
            day_of_week="mon-fri",
            hour=settings.DIGEST_CRON_HOUR,
            minute=0,
            timezone=settings.DIGEST_TIMEZONE,
        ),
        id=DIGEST_JOB_ID,
        name="Daily pipeline digest",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        "Background scheduler started",
        extra={"digest_hour": settings.DIGEST_CRON_HOUR, "timezone": settings.DIGEST_TIMEZONE},
    )


async def stop_scheduler() -> None:
    """Stop the background scheduler if running."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
