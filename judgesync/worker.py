"""
JudgeSync - Queue Worker

Pulls jobs off sync_queue and runs them, one at a time, until SIGTERM/SIGINT.

Per job:
    claim -> validate payload -> run_sync -> complete

While a run is in flight the worker heartbeats the lease and checks between
batches whether an operator cancelled the job. A run that finishes with item
errors still completes as succeeded (its result carries the errors); only an
aborted run or an invalid payload fails the job.

Run:
    python -m judgesync.worker
    python -m judgesync.worker --once      # drain the queue and exit
"""

import argparse
import asyncio
import signal
import socket
import sys
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from .config import configure_logging, get_settings
from .core.errors import FatalSyncFailure
from .core.logging import LogContext, get_logger
from .models import OPTIONS_BY_TYPE, JobOutcome, SyncJob, SyncResult
from .services.job_queue import JobQueue
from .sync.runner import run_sync

logger = get_logger(__name__)

SyncRunner = Callable[..., Awaitable[SyncResult]]


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid4().hex[:6]}"


class SyncWorker:
    """Single-slot queue consumer with graceful shutdown."""

    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        runner: SyncRunner = run_sync,
        worker_id: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        self.queue = queue or JobQueue()
        self.runner = runner
        self.worker_id = worker_id or default_worker_id()
        self.poll_interval = poll_interval or get_settings().WORKER_POLL_INTERVAL_SECONDS
        self._shutdown_event = asyncio.Event()
        self.processed = 0
        self.failed = 0

    async def run(self) -> None:
        """Process jobs until shutdown is signaled."""
        self._setup_signal_handlers()
        logger.info(
            "Starting sync worker",
            extra={"worker_id": self.worker_id, "poll_interval": self.poll_interval},
        )

        while not self._shutdown_event.is_set():
            try:
                handled = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Worker {self.worker_id} error: {e}")
                handled = False

            if not handled:
                await self._idle()

        logger.info(
            "Sync worker stopped",
            extra={
                "worker_id": self.worker_id,
                "jobs_processed": self.processed,
                "jobs_failed": self.failed,
            },
        )

    async def drain(self) -> int:
        """Run jobs until the queue is empty. Returns the number handled."""
        handled = 0
        while not self._shutdown_event.is_set() and await self.run_once():
            handled += 1
        return handled

    async def shutdown(self) -> None:
        """Signal graceful shutdown. The job in flight stops at its next batch boundary."""
        logger.info("Shutdown requested, finishing current batch...")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.create_task(self.shutdown()))
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    # =========================================================================
    # Jobs
    # =========================================================================

    async def run_once(self) -> bool:
        """Claim and process one job. Returns False when nothing was claimed."""
        job = await self.queue.claim_next(self.worker_id)
        if job is None:
            return False

        with LogContext(job_id=job.id, job_type=job.type.value):
            outcome = await self.process(job)
            stored = await self.queue.complete(job.id, outcome)

        if outcome.succeeded:
            self.processed += 1
        else:
            self.failed += 1
        if not stored:
            logger.info("Job finished after it was cancelled or reaped", extra={"job_id": job.id})
        return True

    async def process(self, job: SyncJob) -> JobOutcome:
        try:
            options = OPTIONS_BY_TYPE[job.type].model_validate(job.payload)
        except PydanticValidationError as e:
            logger.warning(
                f"Invalid {job.type.value} payload, failing job",
                extra={"job_id": job.id, "error_type": "ValidationError"},
            )
            return JobOutcome.failure(f"Invalid payload: {e.error_count()} validation errors")

        async def should_stop() -> bool:
            return await self._should_stop(job)

        try:
            result = await self.runner(job.type, options, should_stop=should_stop)
        except FatalSyncFailure as e:
            partial = e.result.as_dict() if isinstance(e.result, SyncResult) else None
            return JobOutcome.failure(str(e), partial)
        except Exception as e:
            logger.exception(f"Job {job.id} crashed: {e}")
            return JobOutcome.failure(f"{type(e).__name__}: {e}")

        return JobOutcome.success(result.as_dict())

    async def _should_stop(self, job: SyncJob) -> bool:
        """Between-batch hook: heartbeat the lease, then look for a stop reason."""
        if self._shutdown_event.is_set():
            return True
        try:
            if not await self.queue.extend_lease(job.id, self.worker_id):
                # Cancelled, or reaped and handed to someone else
                return True
            return await self.queue.is_cancelled(job.id)
        except Exception as e:
            logger.warning(f"Lease heartbeat failed, continuing: {e}", extra={"job_id": job.id})
            return False


async def start_worker(once: bool = False) -> None:
    """Initialize database and run the worker."""
    from .db import close_db_pool, init_db_pool
    from .services.rate_limiter import close_redis

    logger.info("Initializing database connection...")
    await init_db_pool()

    worker = SyncWorker()
    try:
        if once:
            handled = await worker.drain()
            logger.info(f"Queue drained, {handled} jobs handled")
        else:
            await worker.run()
    finally:
        await close_redis()
        await close_db_pool()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="JudgeSync queue worker")
    parser.add_argument("--once", action="store_true", help="drain the queue and exit")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        asyncio.run(start_worker(once=args.once))
    except KeyboardInterrupt:
        logger.info("Worker shut down by user")
    except Exception as e:
        logger.exception(f"Worker crashed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
