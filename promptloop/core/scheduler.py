"""
APScheduler integration for FastAPI.

Runs the due-job runner in-process on a fixed tick (every minute by default,
`worker.tick_cron`). Overlapping ticks and external triggers are safe: the
runner coordinates through the database, not through this process.
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from promptloop.config import get_config, get_settings
from promptloop.core.logging import get_logger

logger = get_logger(__name__)

TICK_SCHEDULE_ID = "run_due_jobs"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def run_due_jobs_tick() -> None:
    """Scheduled tick: process whatever is due."""
    # Import here to avoid circular imports
    from promptloop.jobs.runner import run_due_jobs

    result = await run_due_jobs()
    if result.processed:
        logger.bind(**result.as_dict()).info("scheduled_run_due_jobs_completed")
    else:
        logger.debug("scheduled_run_due_jobs_idle")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-process scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Schedules are rebuilt on every start; nothing needs to persist
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_completed)

    await scheduler.add_schedule(
        run_due_jobs_tick,
        CronTrigger.from_crontab(get_config().worker.tick_cron),
        id=TICK_SCHEDULE_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.bind(jobs=[TICK_SCHEDULE_ID]).info("scheduler_started")
    return scheduler


async def _on_job_completed(event: Any) -> None:
    """Log failed ticks; the runner itself records per-job outcomes."""
    if isinstance(event, JobReleased) and event.outcome == JobOutcome.error:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id or "unknown",
            error=str(exception) if exception else None,
        ).error("scheduled_tick_failed")


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
