"""
Daily trigger for the scheduled sweep.

APScheduler runs the sweep once a day at a fixed UTC time through a
CronTrigger. max_instances=1 keeps a slow sweep from overlapping the next
one. A sweep that raises is logged and the schedule continues with the
next day.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .logger import get_logger

SWEEP_JOB_ID = "certificate-sweep"

# Late firings (e.g. after host sleep) still run within this window
MISFIRE_GRACE_SECONDS = 3600


def parse_schedule_time(value: str):
    """Split an "HH:MM" string into (hour, minute)."""
    hour, minute = value.split(":")
    return int(hour), int(minute)


def daily_trigger(schedule_time: str) -> CronTrigger:
    """CronTrigger firing every day at ``schedule_time`` UTC."""
    hour, minute = parse_schedule_time(schedule_time)
    return CronTrigger(hour=hour, minute=minute, timezone="UTC")


def _run_safely(job: Callable[[], object]) -> Callable[[], None]:
    def run() -> None:
        logger = get_logger()
        try:
            job()
        except Exception as e:
            logger.error(f"Scheduled sweep failed: {type(e).__name__}: {e}")

    return run


def build_scheduler(
    job: Callable[[], object],
    schedule_time: str,
    scheduler: Optional[BlockingScheduler] = None,
) -> BlockingScheduler:
    """
    Register the daily sweep job.

    Args:
        job: Callable executed on each firing
        schedule_time: "HH:MM" in 24h format, UTC
        scheduler: Scheduler to register on; a new BlockingScheduler if omitted

    Returns:
        The scheduler, not yet started
    """
    scheduler = scheduler or BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_safely(job),
        trigger=daily_trigger(schedule_time),
        id=SWEEP_JOB_ID,
        name="daily certificate sweep",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=MISFIRE_GRACE_SECONDS,
    )
    return scheduler


def run_daily(
    job: Callable[[], object],
    schedule_time: str,
    scheduler: Optional[BlockingScheduler] = None,
) -> None:
    """
    Run ``job`` every day at ``schedule_time`` UTC until interrupted.

    Blocks the calling thread.
    """
    logger = get_logger()
    scheduler = build_scheduler(job, schedule_time, scheduler)

    next_run = daily_trigger(schedule_time).get_next_fire_time(
        None, datetime.now(timezone.utc)
    )
    logger.info(f"Next scheduled sweep at {next_run.isoformat()}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
