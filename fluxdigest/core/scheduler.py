"""
APScheduler integration for FastAPI.

Runs the digest tick in-process with an in-memory data store.

Jobs:
- Digest tick: evaluates every user's digest tasks once a minute, five
  seconds past the minute, starting ten seconds after startup
"""

from datetime import datetime, timedelta

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from fluxdigest.config import SchedulerConfig, get_settings
from fluxdigest.core.datetime_utils import local_now
from fluxdigest.core.logging import get_logger
from fluxdigest.jobs.digest_scheduler import DigestScheduler, digest_tick_job, set_digest_scheduler

logger = get_logger(__name__)

DIGEST_TICK_ID = "digest_tick"
DIGEST_FIRST_TICK_ID = "digest_tick_initial"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


def seconds_until_next_tick(now: datetime, offset_seconds: int = 5) -> float:
    """Delay until the next minute boundary plus `offset_seconds`.

    Mirrors `60000 - (now_ms % 60000) + offset_ms`: from 12:00:59.5 the next
    tick is 5.5 s away, from 12:01:00 it is 65 s away.
    """
    now_ms = int(now.timestamp() * 1000)
    return (60_000 - now_ms % 60_000 + offset_seconds * 1000) / 1000


def digest_tick_triggers(
    config: SchedulerConfig, now: datetime | None = None
) -> tuple[DateTrigger, CronTrigger]:
    """One-shot first tick after the initial delay, then every minute at the offset.

    The recurring trigger starts at the first aligned tick after the one-shot
    run, so the startup minute is evaluated exactly once.
    """
    now = now or local_now()
    first_run = now + timedelta(seconds=config.initial_delay_seconds)
    next_tick = first_run + timedelta(
        seconds=seconds_until_next_tick(first_run, config.tick_offset_seconds)
    )
    return (
        DateTrigger(first_run),
        CronTrigger(second=config.tick_offset_seconds, start_time=next_tick),
    )


async def start_scheduler(
    digest_scheduler: DigestScheduler,
    config: SchedulerConfig | None = None,
) -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    config = config or SchedulerConfig({})
    set_digest_scheduler(digest_scheduler)

    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    first_trigger, tick_trigger = digest_tick_triggers(config)
    await scheduler.add_schedule(
        digest_tick_job,
        first_trigger,
        id=DIGEST_FIRST_TICK_ID,
        conflict_policy=ConflictPolicy.replace,
    )
    await scheduler.add_schedule(
        digest_tick_job,
        tick_trigger,
        id=DIGEST_TICK_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.bind(
        jobs=[DIGEST_FIRST_TICK_ID, DIGEST_TICK_ID],
        initial_delay=config.initial_delay_seconds,
        tick_offset=config.tick_offset_seconds,
    ).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None
    set_digest_scheduler(None)
