"""
tests/test_job_queue.py

JobQueue against an in-memory sync_queue.

Verifies:
1. Priority ordering (highest first, oldest first on ties)
2. Exclusive claims: concurrent claimants, exactly one winner
3. Completion only applies to running jobs (cancel wins)
4. Lease expiry: requeue while attempts remain, fail after
5. Stats cover every status; archive stamps but keeps rows
"""

from __future__ import annotations

import asyncio

import pytest

from judgesync.models import JobOutcome, SyncJobStatus, SyncJobType
from judgesync.services.job_queue import JobQueue
from tests.fakes import FakeQueueDB


class TestAddAndClaim:
    @pytest.mark.asyncio
    async def test_add_job_is_pending(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = await queue.add_job(SyncJobType.JUDGE, {"judgeIds": ["42"]}, priority=200)

        row = queue_db.jobs[job_id]
        assert row["status"] == "pending"
        assert row["type"] == "judge"
        assert row["payload"] == {"judgeIds": ["42"]}
        assert row["max_attempts"] == 3

    @pytest.mark.asyncio
    async def test_add_job_accepts_plain_string_type(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = await queue.add_job("court")

        assert queue_db.jobs[job_id]["type"] == "court"
        assert queue_db.jobs[job_id]["payload"] == {}

    @pytest.mark.asyncio
    async def test_add_job_rejects_unknown_type(self, queue: JobQueue) -> None:
        with pytest.raises(ValueError):
            await queue.add_job("planet")

    @pytest.mark.asyncio
    async def test_claims_highest_priority_then_oldest(self, queue: JobQueue) -> None:
        low = await queue.add_job(SyncJobType.JUDGE, priority=50)
        first_high = await queue.add_job(SyncJobType.COURT, priority=200)
        second_high = await queue.add_job(SyncJobType.DECISION, priority=200)

        claimed = [await queue.claim_next("w1") for _ in range(3)]

        assert [job.id for job in claimed] == [first_high, second_high, low]

    @pytest.mark.asyncio
    async def test_claim_sets_running_lease_and_attempt(
        self, queue: JobQueue, queue_db: FakeQueueDB
    ) -> None:
        await queue.add_job(SyncJobType.JUDGE)

        job = await queue.claim_next("worker-a")

        assert job is not None
        assert job.status is SyncJobStatus.RUNNING
        assert job.type is SyncJobType.JUDGE
        assert job.worker_id == "worker-a"
        assert job.attempts == 1
        assert (job.lease_expires_at - queue_db.now).total_seconds() == 900

    @pytest.mark.asyncio
    async def test_empty_queue_returns_none(self, queue: JobQueue) -> None:
        assert await queue.claim_next("w1") is None


class TestExclusiveClaim:
    """Ownership is decided by the conditional update alone."""

    @pytest.mark.asyncio
    async def test_concurrent_claimants_one_winner(self, queue_db: FakeQueueDB) -> None:
        job_id = queue_db.insert("judge")
        queues = [JobQueue(connection=queue_db.connection) for _ in range(5)]

        results = await asyncio.gather(*(q.claim_next(f"w{i}") for i, q in enumerate(queues)))

        winners = [job for job in results if job is not None]
        assert len(winners) == 1
        assert winners[0].id == job_id
        assert queue_db.jobs[job_id]["attempts"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_claimants_split_distinct_jobs(self, queue_db: FakeQueueDB) -> None:
        for _ in range(3):
            queue_db.insert("court")
        queue = JobQueue(connection=queue_db.connection)

        claimed = []
        for _ in range(4):
            results = await asyncio.gather(queue.claim_next("a"), queue.claim_next("b"))
            claimed.extend(job.id for job in results if job is not None)

        assert sorted(claimed) == sorted(queue_db.jobs)
        assert len(claimed) == len(set(claimed))


class TestComplete:
    @pytest.mark.asyncio
    async def test_success_stores_result(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.COURT)
        job = await queue.claim_next("w1")

        stored = await queue.complete(job.id, JobOutcome.success({"itemsProcessed": 4}))

        row = queue_db.jobs[job.id]
        assert stored is True
        assert row["status"] == "succeeded"
        assert row["result"] == {"itemsProcessed": 4}
        assert row["lease_expires_at"] is None

    @pytest.mark.asyncio
    async def test_failure_stores_error(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.COURT)
        job = await queue.claim_next("w1")

        await queue.complete(job.id, JobOutcome.failure("upstream auth rejected"))

        assert queue_db.jobs[job.id]["status"] == "failed"
        assert queue_db.jobs[job.id]["error"] == "upstream auth rejected"

    @pytest.mark.asyncio
    async def test_cancel_wins_over_late_completion(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.JUDGE)
        job = await queue.claim_next("w1")

        assert await queue.cancel_jobs() == 1
        stored = await queue.complete(job.id, JobOutcome.success({}))

        assert stored is False
        assert queue_db.jobs[job.id]["status"] == "cancelled"
        assert await queue.is_cancelled(job.id) is True


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_by_type(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        judge = await queue.add_job(SyncJobType.JUDGE)
        court = await queue.add_job(SyncJobType.COURT)

        cancelled = await queue.cancel_jobs(SyncJobType.JUDGE)

        assert cancelled == 1
        assert queue_db.jobs[judge]["status"] == "cancelled"
        assert queue_db.jobs[court]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_cancel_skips_finished_jobs(self, queue: JobQueue) -> None:
        await queue.add_job(SyncJobType.COURT)
        job = await queue.claim_next("w1")
        await queue.complete(job.id, JobOutcome.success())

        assert await queue.cancel_jobs() == 0


class TestLeases:
    @pytest.mark.asyncio
    async def test_expired_lease_requeued(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.DECISION)
        job = await queue.claim_next("crashed-worker")
        queue_db.advance(901)

        assert await queue.reap_expired_leases() == 1

        row = queue_db.jobs[job.id]
        assert row["status"] == "pending"
        assert row["worker_id"] is None
        again = await queue.claim_next("w2")
        assert again.id == job.id
        assert again.attempts == 2

    @pytest.mark.asyncio
    async def test_live_lease_untouched(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.DECISION)
        await queue.claim_next("w1")
        queue_db.advance(600)

        assert await queue.reap_expired_leases() == 0

    @pytest.mark.asyncio
    async def test_heartbeat_extends_lease(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.DECISION)
        job = await queue.claim_next("w1")
        queue_db.advance(600)

        assert await queue.extend_lease(job.id, "w1") is True
        queue_db.advance(600)
        assert await queue.reap_expired_leases() == 0

    @pytest.mark.asyncio
    async def test_heartbeat_from_other_worker_rejected(self, queue: JobQueue) -> None:
        await queue.add_job(SyncJobType.DECISION)
        job = await queue.claim_next("w1")

        assert await queue.extend_lease(job.id, "w2") is False

    @pytest.mark.asyncio
    async def test_out_of_attempts_fails(self, queue_db: FakeQueueDB) -> None:
        queue = JobQueue(connection=queue_db.connection, lease_seconds=60, max_attempts=1)
        await queue.add_job(SyncJobType.JUDGE)
        job = await queue.claim_next("w1")
        queue_db.advance(61)

        assert await queue.reap_expired_leases() == 1
        assert queue_db.jobs[job.id]["status"] == "failed"
        assert await queue.claim_next("w2") is None


class TestStatsAndArchive:
    @pytest.mark.asyncio
    async def test_stats_include_every_status(self, queue: JobQueue) -> None:
        await queue.add_job(SyncJobType.COURT)
        await queue.add_job(SyncJobType.COURT)
        await queue.claim_next("w1")

        stats = await queue.get_stats()

        assert stats == {
            "pending": 1,
            "running": 1,
            "succeeded": 0,
            "failed": 0,
            "cancelled": 0,
        }

    @pytest.mark.asyncio
    async def test_archive_old_finished_jobs(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        await queue.add_job(SyncJobType.COURT)
        job = await queue.claim_next("w1")
        await queue.complete(job.id, JobOutcome.success())
        pending = await queue.add_job(SyncJobType.COURT)

        queue_db.advance(31 * 86400)
        archived = await queue.archive_finished(30)

        assert archived == 1
        assert queue_db.jobs[job.id]["archived_at"] is not None
        assert queue_db.jobs[pending]["archived_at"] is None
        assert (await queue.get_stats())["succeeded"] == 0
