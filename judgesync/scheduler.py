"""
JudgeSync - Job Scheduler

APScheduler AsyncIOScheduler that feeds the sync queue. Scheduled jobs only
enqueue work; the queue worker runs it.

Schedule (UTC):
- daily 02:00    decision sync for yesterday's opinions, then stale judges
- sunday 04:00   weekly refresh: courts, CA judges, US judges, decision backfill
- sunday 06:00   archive finished jobs older than 30 days
- every REAPER_INTERVAL_SECONDS  requeue jobs whose lease expired
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .config import get_settings
from .models import SyncJobType
from .services.job_queue import JobQueue

logger = logging.getLogger(__name__)

ARCHIVE_AFTER_DAYS = 30

_scheduler: Optional[AsyncIOScheduler] = None


@dataclass(frozen=True)
class ScheduledSync:
    job_type: SyncJobType
    payload: Dict[str, Any]
    priority: int
    description: str


DAILY_SYNCS: List[ScheduledSync] = [
    ScheduledSync(
        SyncJobType.DECISION,
        {"batchSize": 5, "jurisdiction": "CA", "daysSinceLast": 1, "maxDecisionsPerJudge": 20},
        100,
        "Daily decision sync",
    ),
    ScheduledSync(
        SyncJobType.JUDGE,
        {"batchSize": 20, "jurisdiction": "CA", "forceRefresh": False},
        50,
        "Daily stale judge refresh",
    ),
]

WEEKLY_SYNCS: List[ScheduledSync] = [
    ScheduledSync(
        SyncJobType.COURT,
        {"batchSize": 30, "jurisdiction": "CA", "forceRefresh": True},
        200,
        "Weekly court refresh",
    ),
    ScheduledSync(
        SyncJobType.JUDGE,
        {"batchSize": 15, "jurisdiction": "CA", "forceRefresh": True},
        150,
        "Weekly CA judge refresh",
    ),
    ScheduledSync(
        SyncJobType.JUDGE,
        {"batchSize": 20, "jurisdiction": "US", "forceRefresh": False},
        140,
        "Weekly federal judge maintenance",
    ),
    ScheduledSync(
        SyncJobType.DECISION,
        {"batchSize": 3, "jurisdiction": "CA", "daysSinceLast": 7, "maxDecisionsPerJudge": 100},
        100,
        "Weekly decision backfill",
    ),
]


def get_scheduler() -> AsyncIOScheduler:
    """
    Get the scheduler instance.

    Raises:
        RuntimeError: If scheduler not initialized
    """
    if _scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")
    return _scheduler


# =============================================================================
# Jobs
# =============================================================================


async def enqueue_syncs(syncs: List[ScheduledSync], queue: Optional[JobQueue] = None) -> List[str]:
    queue = queue or JobQueue()
    job_ids = []
    for sync in syncs:
        job_id = await queue.add_job(sync.job_type, dict(sync.payload), priority=sync.priority)
        logger.info(f"Scheduled: {sync.description}", extra={"job_id": job_id})
        job_ids.append(job_id)
    return job_ids


async def daily_sync_job() -> None:
    await enqueue_syncs(DAILY_SYNCS)


async def weekly_sync_job() -> None:
    await enqueue_syncs(WEEKLY_SYNCS)


async def reap_leases_job() -> None:
    await JobQueue().reap_expired_leases()


async def archive_job() -> None:
    await JobQueue().archive_finished(ARCHIVE_AFTER_DAYS)


# =============================================================================
# Setup
# =============================================================================


def _register_jobs(scheduler: AsyncIOScheduler, settings: Any) -> None:
    """
    Register all scheduled jobs.
    """
    # Daily syncs - 2 AM UTC
    scheduler.add_job(
        daily_sync_job,
        trigger=CronTrigger(hour=2, minute=0),
        id="daily_sync",
        name="Daily Sync",
        replace_existing=True,
    )

    # Weekly refresh - Sunday 4 AM UTC
    scheduler.add_job(
        weekly_sync_job,
        trigger=CronTrigger(day_of_week="sun", hour=4, minute=0),
        id="weekly_sync",
        name="Weekly Sync",
        replace_existing=True,
    )

    # Queue archive - Sunday 6 AM UTC
    scheduler.add_job(
        archive_job,
        trigger=CronTrigger(day_of_week="sun", hour=6, minute=0),
        id="queue_archive",
        name="Queue Archive",
        replace_existing=True,
    )

    # Lease reaper
    scheduler.add_job(
        reap_leases_job,
        trigger=IntervalTrigger(seconds=settings.REAPER_INTERVAL_SECONDS),
        id="lease_reaper",
        name="Lease Reaper",
        replace_existing=True,
    )


def init_scheduler() -> AsyncIOScheduler:
    """Create the scheduler and register jobs. Starting it is the caller's job."""
    global _scheduler

    settings = get_settings()
    logger.info("Initializing job scheduler...")

    _scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
    )
    _register_jobs(_scheduler, settings)
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Job scheduler stopped")
    _scheduler = None
