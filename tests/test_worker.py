"""
tests/test_worker.py

Queue worker: claim, run, complete, and between-batch stop checks.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from judgesync.core.errors import FatalSyncFailure
from judgesync.models import JudgeSyncOptions, SyncJobType, SyncResult
from judgesync.services.job_queue import JobQueue
from judgesync.worker import SyncWorker
from tests.fakes import FakeQueueDB


def make_result(errors: int = 0) -> SyncResult:
    result = SyncResult(
        sync_type="judge",
        sync_id="judge-sync-abc",
        success=errors == 0,
        items_processed=3,
        items_created=3 - errors,
    )
    result.errors = [f"Failed to process judge {i}: boom" for i in range(errors)]
    return result


def make_worker(queue: JobQueue, runner: AsyncMock) -> SyncWorker:
    return SyncWorker(queue=queue, runner=runner, worker_id="worker-test", poll_interval=0.01)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_empty_queue(self, queue: JobQueue) -> None:
        runner = AsyncMock()

        assert await make_worker(queue, runner).run_once() is False
        runner.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_stores_result(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = queue_db.insert("judge", {"judgeIds": ["p1"], "forceRefresh": True})
        runner = AsyncMock(return_value=make_result())
        worker = make_worker(queue, runner)

        assert await worker.run_once() is True

        job = queue_db.jobs[job_id]
        assert job["status"] == "succeeded"
        assert job["result"]["itemsProcessed"] == 3
        assert worker.processed == 1

        job_type, options = runner.await_args.args
        assert job_type is SyncJobType.JUDGE
        assert isinstance(options, JudgeSyncOptions)
        assert options.ids == ["p1"]
        assert options.force_refresh is True
        assert callable(runner.await_args.kwargs["should_stop"])

    @pytest.mark.asyncio
    async def test_item_errors_still_succeed(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = queue_db.insert("judge")
        worker = make_worker(queue, AsyncMock(return_value=make_result(errors=2)))

        await worker.run_once()

        job = queue_db.jobs[job_id]
        assert job["status"] == "succeeded"
        assert len(job["result"]["errors"]) == 2

    @pytest.mark.asyncio
    async def test_aborted_run_fails_with_partial_result(
        self, queue: JobQueue, queue_db: FakeQueueDB
    ) -> None:
        job_id = queue_db.insert("judge")
        runner = AsyncMock(side_effect=FatalSyncFailure("judge sync aborted: bad token", make_result(1)))
        worker = make_worker(queue, runner)

        await worker.run_once()

        job = queue_db.jobs[job_id]
        assert job["status"] == "failed"
        assert job["error"] == "judge sync aborted: bad token"
        assert job["result"]["itemsProcessed"] == 3
        assert worker.failed == 1

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_without_running(
        self, queue: JobQueue, queue_db: FakeQueueDB
    ) -> None:
        job_id = queue_db.insert("decision", {"batchSize": 0, "maxDecisionsPerJudge": -1})
        runner = AsyncMock()

        await make_worker(queue, runner).run_once()

        job = queue_db.jobs[job_id]
        assert job["status"] == "failed"
        assert job["error"] == "Invalid payload: 2 validation errors"
        runner.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_crash_fails_job(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = queue_db.insert("court")

        await make_worker(queue, AsyncMock(side_effect=RuntimeError("pool closed"))).run_once()

        assert queue_db.jobs[job_id]["status"] == "failed"
        assert queue_db.jobs[job_id]["error"] == "RuntimeError: pool closed"

    @pytest.mark.asyncio
    async def test_cancelled_mid_run_keeps_cancelled(
        self, queue: JobQueue, queue_db: FakeQueueDB
    ) -> None:
        job_id = queue_db.insert("judge")

        async def runner(job_type, options, should_stop):
            await queue.cancel_jobs()
            assert await should_stop() is True
            return make_result()

        await make_worker(queue, runner).run_once()

        assert queue_db.jobs[job_id]["status"] == "cancelled"


class TestShouldStop:
    @pytest.mark.asyncio
    async def test_heartbeat_extends_lease(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        job_id = queue_db.insert("judge")
        worker = make_worker(queue, AsyncMock())
        job = await queue.claim_next(worker.worker_id)
        first_lease = queue_db.jobs[job_id]["lease_expires_at"]
        queue_db.advance(120)

        assert await worker._should_stop(job) is False
        assert queue_db.jobs[job_id]["lease_expires_at"] > first_lease

    @pytest.mark.asyncio
    async def test_lost_lease_stops(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        queue_db.insert("judge")
        worker = make_worker(queue, AsyncMock())
        job = await queue.claim_next(worker.worker_id)
        queue_db.jobs[job.id]["worker_id"] = "someone-else"

        assert await worker._should_stop(job) is True

    @pytest.mark.asyncio
    async def test_shutdown_stops(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        queue_db.insert("judge")
        worker = make_worker(queue, AsyncMock())
        job = await queue.claim_next(worker.worker_id)

        await worker.shutdown()

        assert await worker._should_stop(job) is True

    @pytest.mark.asyncio
    async def test_heartbeat_error_keeps_running(self, queue_db: FakeQueueDB) -> None:
        queue = JobQueue(connection=queue_db.connection)
        queue_db.insert("judge")
        worker = make_worker(queue, AsyncMock())
        job = await queue.claim_next(worker.worker_id)
        queue.extend_lease = AsyncMock(side_effect=ConnectionError("db down"))

        assert await worker._should_stop(job) is False


class TestDrain:
    @pytest.mark.asyncio
    async def test_drain_handles_every_job(self, queue: JobQueue, queue_db: FakeQueueDB) -> None:
        queue_db.insert("court", priority=10)
        queue_db.insert("judge", priority=300)
        queue_db.insert("decision", {"batchSize": 0})
        seen = []

        async def runner(job_type, options, should_stop):
            seen.append(job_type)
            return make_result()

        worker = make_worker(queue, runner)

        assert await worker.drain() == 3
        assert seen == [SyncJobType.JUDGE, SyncJobType.COURT]
        assert worker.processed == 2
        assert worker.failed == 1
        assert await worker.run_once() is False
