"""
tests/test_scheduler.py

Scheduled job registration and what each schedule enqueues.
"""

from __future__ import annotations

import pytest

from judgesync import scheduler
from judgesync.models import OPTIONS_BY_TYPE, SyncJobType
from judgesync.services.job_queue import JobQueue
from tests.fakes import FakeQueueDB


@pytest.fixture(autouse=True)
def reset_scheduler():
    yield
    scheduler.shutdown_scheduler()


class TestRegistration:
    def test_get_scheduler_before_init(self) -> None:
        with pytest.raises(RuntimeError):
            scheduler.get_scheduler()

    def test_registers_all_jobs(self) -> None:
        sched = scheduler.init_scheduler()

        ids = {job.id for job in sched.get_jobs()}
        assert ids == {"daily_sync", "weekly_sync", "queue_archive", "lease_reaper"}
        assert scheduler.get_scheduler() is sched
        assert sched.running is False


class TestPayloads:
    @pytest.mark.parametrize(
        "sync", scheduler.DAILY_SYNCS + scheduler.WEEKLY_SYNCS, ids=lambda s: s.description
    )
    def test_payloads_are_valid_options(self, sync) -> None:
        options = OPTIONS_BY_TYPE[sync.job_type].model_validate(sync.payload)

        assert options.batch_size == sync.payload["batchSize"]

    def test_daily_decisions_look_back_one_day(self) -> None:
        [decisions] = [s for s in scheduler.DAILY_SYNCS if s.job_type is SyncJobType.DECISION]

        assert decisions.payload["daysSinceLast"] == 1


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_daily(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_ids = await scheduler.enqueue_syncs(scheduler.DAILY_SYNCS, queue)

        assert len(job_ids) == 2
        jobs = [queue_db.jobs[job_id] for job_id in job_ids]
        assert [j["type"] for j in jobs] == ["decision", "judge"]
        assert [j["priority"] for j in jobs] == [100, 50]
        assert all(j["status"] == "pending" for j in jobs)

    @pytest.mark.asyncio
    async def test_enqueue_weekly_does_not_share_payloads(
        self, queue: JobQueue, queue_db: FakeQueueDB
    ) -> None:
        job_ids = await scheduler.enqueue_syncs(scheduler.WEEKLY_SYNCS, queue)
        queue_db.jobs[job_ids[0]]["payload"]["batchSize"] = 999

        assert len(job_ids) == 4
        assert scheduler.WEEKLY_SYNCS[0].payload["batchSize"] == 30
        assert {queue_db.jobs[j]["type"] for j in job_ids} == {"court", "judge", "decision"}
