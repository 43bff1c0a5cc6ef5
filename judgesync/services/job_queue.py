"""
JudgeSync - Job Queue

Persisted priority queue on the sync_queue table.

Ownership of a job is decided by the database alone: a claim is a
conditional UPDATE (``WHERE id = ? AND status = 'pending'``). Of any number
of concurrent claimants exactly one sees the row come back; the others get
None and move on. There are no in-process locks.

Claims carry a lease. A worker that dies mid-run leaves its job running with
an expiring lease; the reaper returns such jobs to pending (or fails them once
they have used up max_attempts).

Lifecycle:
    pending -> running -> succeeded | failed
    pending | running -> cancelled
    running (lease expired) -> pending | failed      (reaper)

Usage:
    queue = JobQueue()
    job_id = await queue.add_job(SyncJobType.JUDGE, {"judgeIds": ["42"]}, priority=200)
    job = await queue.claim_next(worker_id="worker-1")
    if job:
        ...
        await queue.complete(job.id, JobOutcome.success(result))
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..config import get_settings
from ..db import get_connection
from ..models import JobOutcome, SyncJob, SyncJobStatus, SyncJobType
from ..repositories.records import ConnectionFactory

logger = logging.getLogger(__name__)

# =============================================================================
# SQL
# =============================================================================

ADD_JOB_SQL = """
    INSERT INTO sync_queue (type, payload, priority, max_attempts)
    VALUES (%s, %s, %s, %s)
    RETURNING id
"""

CLAIM_CANDIDATE_SQL = """
    SELECT id FROM sync_queue
    WHERE status = 'pending'
    ORDER BY priority DESC, created_at ASC
    LIMIT 1
"""

CLAIM_SQL = """
    UPDATE sync_queue
    SET status = 'running',
        started_at = now(),
        attempts = attempts + 1,
        worker_id = %s,
        lease_expires_at = now() + make_interval(secs => %s),
        error = NULL
    WHERE id = %s AND status = 'pending'
    RETURNING id, type, payload, priority, status, attempts, max_attempts,
              worker_id, lease_expires_at, created_at, started_at, completed_at, error
"""

COMPLETE_SQL = """
    UPDATE sync_queue
    SET status = %s,
        completed_at = now(),
        error = %s,
        result = %s,
        lease_expires_at = NULL
    WHERE id = %s AND status = 'running'
    RETURNING id
"""

CANCEL_SQL = """
    UPDATE sync_queue
    SET status = 'cancelled',
        completed_at = now(),
        lease_expires_at = NULL
    WHERE status IN ('pending', 'running')
      AND (%s::text IS NULL OR type = %s)
    RETURNING id
"""

STATS_SQL = """
    SELECT status, count(*) AS n
    FROM sync_queue
    WHERE archived_at IS NULL
    GROUP BY status
"""

EXTEND_LEASE_SQL = """
    UPDATE sync_queue
    SET lease_expires_at = now() + make_interval(secs => %s)
    WHERE id = %s AND worker_id = %s AND status = 'running'
    RETURNING id
"""

REQUEUE_EXPIRED_SQL = """
    UPDATE sync_queue
    SET status = 'pending',
        worker_id = NULL,
        lease_expires_at = NULL,
        started_at = NULL,
        error = 'lease expired'
    WHERE status = 'running'
      AND lease_expires_at < now()
      AND attempts < max_attempts
    RETURNING id
"""

FAIL_EXPIRED_SQL = """
    UPDATE sync_queue
    SET status = 'failed',
        completed_at = now(),
        lease_expires_at = NULL,
        error = 'lease expired with no attempts left'
    WHERE status = 'running'
      AND lease_expires_at < now()
      AND attempts >= max_attempts
    RETURNING id
"""

JOB_STATUS_SQL = "SELECT status FROM sync_queue WHERE id = %s"

ARCHIVE_SQL = """
    UPDATE sync_queue
    SET archived_at = now()
    WHERE archived_at IS NULL
      AND status IN ('succeeded', 'failed', 'cancelled')
      AND completed_at < now() - make_interval(days => %s)
    RETURNING id
"""


class JobQueue:
    def __init__(
        self,
        connection: ConnectionFactory = get_connection,
        lease_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        settings = get_settings()
        self._connection = connection
        self.lease_seconds = lease_seconds or settings.JOB_LEASE_SECONDS
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS

    async def add_job(
        self,
        job_type: SyncJobType | str,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = 100,
    ) -> str:
        """Insert a pending job. Store errors propagate."""
        job_type = SyncJobType(job_type)
        async with self._connection() as conn:
            job_id = await conn.fetchval(
                ADD_JOB_SQL, job_type.value, payload or {}, priority, self.max_attempts
            )
        logger.info(
            f"Queued {job_type.value} job (priority {priority})",
            extra={"job_id": str(job_id), "job_type": job_type.value},
        )
        return str(job_id)

    async def claim_next(self, worker_id: str) -> Optional[SyncJob]:
        """
        Claim the highest-priority pending job (oldest first on ties).

        Returns None when the queue is empty or another worker won the race
        for the candidate row.
        """
        async with self._connection() as conn:
            candidate = await conn.fetchval(CLAIM_CANDIDATE_SQL)
            if candidate is None:
                return None
            row = await conn.fetchrow(CLAIM_SQL, worker_id, self.lease_seconds, candidate)

        if row is None:
            logger.debug(f"Lost claim race for job {candidate}")
            return None

        job = SyncJob.from_row(row)
        logger.info(
            f"Claimed {job.type.value} job (attempt {job.attempts})",
            extra={"job_id": job.id, "job_type": job.type.value},
        )
        return job

    async def complete(self, job_id: str, outcome: JobOutcome) -> bool:
        """
        Move a running job to succeeded or failed.

        Returns False when the job was no longer running (cancelled, or
        reaped after its lease expired).
        """
        status = SyncJobStatus.SUCCEEDED if outcome.succeeded else SyncJobStatus.FAILED
        async with self._connection() as conn:
            row = await conn.fetchrow(
                COMPLETE_SQL, status.value, outcome.error, outcome.result, job_id
            )

        if row is None:
            logger.warning(
                "Completion ignored: job is no longer running",
                extra={"job_id": job_id, "status": status.value},
            )
            return False
        return True

    async def cancel_jobs(self, job_type: SyncJobType | str | None = None) -> int:
        type_value = SyncJobType(job_type).value if job_type else None
        async with self._connection() as conn:
            rows = await conn.fetch(CANCEL_SQL, type_value, type_value)
        logger.info(
            f"Cancelled {len(rows)} jobs",
            extra={"job_type": type_value, "count": len(rows)},
        )
        return len(rows)

    async def get_stats(self) -> Dict[str, int]:
        stats = {status.value: 0 for status in SyncJobStatus}
        async with self._connection() as conn:
            rows = await conn.fetch(STATS_SQL)
        for row in rows:
            stats[row["status"]] = int(row["n"])
        return stats

    async def extend_lease(self, job_id: str, worker_id: str) -> bool:
        async with self._connection() as conn:
            row = await conn.fetchrow(EXTEND_LEASE_SQL, self.lease_seconds, job_id, worker_id)
        return row is not None

    async def reap_expired_leases(self) -> int:
        """Requeue (or fail) running jobs whose lease ran out. Returns rows touched."""
        async with self._connection() as conn:
            requeued = await conn.fetch(REQUEUE_EXPIRED_SQL)
            failed = await conn.fetch(FAIL_EXPIRED_SQL)

        if requeued or failed:
            logger.warning(
                f"Reaped expired leases: {len(requeued)} requeued, {len(failed)} failed",
                extra={"count": len(requeued) + len(failed)},
            )
        return len(requeued) + len(failed)

    async def is_cancelled(self, job_id: str) -> bool:
        async with self._connection() as conn:
            status = await conn.fetchval(JOB_STATUS_SQL, job_id)
        return status == SyncJobStatus.CANCELLED.value

    async def archive_finished(self, older_than_days: int = 30) -> int:
        """Stamp archived_at on old terminal jobs. Rows are never deleted."""
        async with self._connection() as conn:
            rows = await conn.fetch(ARCHIVE_SQL, older_than_days)
        logger.info(f"Archived {len(rows)} finished jobs", extra={"count": len(rows)})
        return len(rows)
