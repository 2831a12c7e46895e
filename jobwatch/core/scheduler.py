"""
APScheduler integration for FastAPI.

Runs nightly retention in-process when `SCHEDULER_ENABLED` is set:
- Archive: marks finished executions older than `retention.archive_after_days` archived
- Cleanup: deletes archived executions older than `retention.cleanup_after_days`

Both run at `retention.maintenance_time_utc`, archive first.
"""

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from jobwatch.config import get_config, get_settings
from jobwatch.core.database import AsyncSessionLocal
from jobwatch.core.logging import get_logger

logger = get_logger(__name__)

scheduler: AsyncScheduler | None = None


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute)."""
    hour, _, minute = value.partition(":")
    parsed = (int(hour), int(minute or 0))
    if not (0 <= parsed[0] < 24 and 0 <= parsed[1] < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return parsed


async def nightly_retention_job() -> None:
    """Archive old finished executions, then clean up expired archived ones."""
    from jobwatch.services.retention import RetentionManager

    config = get_config()
    logger.info("scheduled_retention_started")
    async with AsyncSessionLocal() as db:
        try:
            manager = RetentionManager(db, config)
            archived, _ = await manager.archive_old(config.retention.archive_after_days)
            cleanup = await manager.cleanup_archived(config.retention.cleanup_after_days)
            logger.bind(archived=archived, deleted=cleanup["deleted"]).info(
                "scheduled_retention_completed"
            )
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_retention_failed")
            raise  # Re-raise so APScheduler records the failure


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    hour, minute = parse_time_of_day(get_config().retention.maintenance_time_utc)

    scheduler = AsyncScheduler(data_store=MemoryDataStore())
    # APScheduler 4.x must be entered before schedules can be added
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        nightly_retention_job,
        CronTrigger(hour=hour, minute=minute, timezone="UTC"),
        id="nightly_retention",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()
    logger.bind(jobs=["nightly_retention"], at=f"{hour:02d}:{minute:02d}").info(
        "scheduler_started"
    )
    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None

