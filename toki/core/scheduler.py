"""Tick scheduling for the tracker daemon."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

TICK_JOB_ID = "tracker_tick"


def create_tick_scheduler(
    tick_job: Callable[[], Awaitable[None]],
    interval_seconds: int,
) -> AsyncIOScheduler:
    """Scheduler running ``tick_job`` every interval, starting immediately.

    ``max_instances=1`` with ``coalesce=True`` means a slow tick delays the
    next one instead of stacking runs.
    """
    scheduler = AsyncIOScheduler(timezone=UTC)
    scheduler.add_job(
        tick_job,
        trigger=IntervalTrigger(seconds=interval_seconds, timezone=UTC),
        id=TICK_JOB_ID,
        name="Tracker tick",
        next_run_time=datetime.now(UTC),
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the background scheduler. Must be called with a running event loop."""
    scheduler.start()
    logger.info("Scheduler started with jobs: " + ", ".join(job.name for job in scheduler.get_jobs()))


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler without waiting; the daemon waits for the tick itself."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
