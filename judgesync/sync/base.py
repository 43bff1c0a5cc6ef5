"""
JudgeSync - Sync Manager Base

Shared run loop for the court, judge and decision managers.

A run:
    1. builds its candidate set (explicit ids, stale records, or everything
       when force_refresh is set)
    2. walks the candidates in fixed-size batches, sequentially; between
       batches it checks the wall-clock budget and cooperative cancellation,
       then pauses for the inter-batch delay
    3. sends every upstream call through the shared rate limiter and the
       endpoint's circuit breaker, retrying transient failures with backoff
    4. isolates failures per item: an item error is recorded and the run
       moves on
    5. writes exactly one sync_logs row, whatever happened

AuthenticationError and an unreachable rate-limit store (when failing
closed) abort the run. The audit row is still written and the caller gets
FatalSyncFailure.

Accounting identity, for every run:
    items_processed == items_created + items_updated + duplicates_skipped + len(errors)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
)
from uuid import uuid4

from ..config import Settings, get_settings
from ..core.backoff import BackoffState
from ..core.errors import (
    AuthenticationError,
    CircuitOpenError,
    FatalSyncFailure,
    RateLimiterUnavailable,
    TransientUpstreamError,
    UpstreamError,
)
from ..core.logging import LogContext
from ..models import SyncLogStatus, SyncOptions, SyncResult, UpsertOutcome
from ..repositories import FreshnessRepository, MetricsRepository, SyncLogRepository
from ..services.circuit_breaker import CircuitBreakerRegistry, CircuitEventBuffer
from ..services.courtlistener import CourtListenerClient
from ..services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that end the whole run instead of a single item
FATAL_ERRORS = (AuthenticationError, RateLimiterUnavailable)

# Client key for the outbound budget; one key so every process shares it
UPSTREAM_CLIENT_KEY = "judgesync"

MIN_RATE_LIMIT_WAIT_SECONDS = 0.05
MAX_LOGGED_ERRORS = 50

StopCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class Candidate:
    """One unit of work for a run: an upstream id plus a human label."""

    key: str
    label: str
    data: Optional[Dict[str, Any]] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncManager:
    """Base class. Subclasses build candidates and sync one candidate."""

    sync_type: ClassVar[str] = ""
    entity: ClassVar[str] = ""
    counter_prefix: ClassVar[str] = ""
    options_model: ClassVar[Type[SyncOptions]] = SyncOptions

    def __init__(
        self,
        client: CourtListenerClient,
        rate_limiter: SlidingWindowRateLimiter,
        breakers: Optional[CircuitBreakerRegistry] = None,
        events: Optional[CircuitEventBuffer] = None,
        logs: Optional[SyncLogRepository] = None,
        freshness: Optional[FreshnessRepository] = None,
        metrics: Optional[MetricsRepository] = None,
        settings: Optional[Settings] = None,
        should_stop: Optional[StopCheck] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.rate_limiter = rate_limiter
        self.events = events if events is not None else CircuitEventBuffer()
        self.breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=self.settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=self.settings.CIRCUIT_COOLDOWN_SECONDS,
            event_sink=self.events,
        )
        self.logs = logs or SyncLogRepository()
        self.freshness = freshness or FreshnessRepository()
        self.metrics = metrics or MetricsRepository()
        self._should_stop = should_stop
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    async def build_candidates(self, options: Any) -> List[Candidate]:
        raise NotImplementedError

    async def sync_one(self, candidate: Candidate, options: Any) -> UpsertOutcome:
        raise NotImplementedError

    async def process_candidate(
        self, candidate: Candidate, options: Any, result: SyncResult
    ) -> None:
        """Default: one candidate is one item."""
        await self._run_item(
            result, candidate.label, lambda: self.sync_one(candidate, options)
        )

    # =========================================================================
    # Run
    # =========================================================================

    def parse_options(self, options: Union[SyncOptions, Dict[str, Any], None]) -> SyncOptions:
        if isinstance(options, self.options_model):
            return options
        if isinstance(options, SyncOptions):
            return self.options_model.model_validate(options.model_dump())
        return self.options_model.model_validate(options or {})

    async def sync(self, options: Union[SyncOptions, Dict[str, Any], None] = None) -> SyncResult:
        """
        Run one sync and write its audit row.

        Raises FatalSyncFailure when the run aborted or the audit row could
        not be written; the partial result rides on the exception.
        """
        opts = self.parse_options(options)
        sync_id = f"{self.sync_type}-sync-{uuid4().hex[:12]}"
        result = SyncResult(sync_type=self.sync_type, sync_id=sync_id)
        started_at = utcnow()
        started = self._clock()
        fatal: Optional[BaseException] = None

        with LogContext(sync_id=sync_id, sync_type=self.sync_type):
            logger.info(
                f"Starting {self.sync_type} sync",
                extra={"status": "started"},
            )
            try:
                await self._run(opts, result, started)
            except Exception as e:
                fatal = e
                logger.error(
                    f"{self.sync_type} sync aborted: {type(e).__name__}: {e}",
                    exc_info=not isinstance(e, FATAL_ERRORS),
                )

            result.duration_ms = int((self._clock() - started) * 1000)
            result.success = fatal is None and not result.errors
            completed_at = utcnow()

            await self._flush_circuit_events()
            if fatal is None:
                await self._advance_freshness(opts, result, completed_at)

            try:
                await self.logs.insert(
                    self._log_entry(opts, result, started_at, completed_at, fatal)
                )
            except Exception as e:
                logger.error(f"Could not write sync log: {e}")
                raise FatalSyncFailure(
                    f"{self.sync_type} sync could not persist its audit row", result
                ) from e

            logger.info(
                f"{self.sync_type} sync finished: {result.items_processed} processed, "
                f"{result.items_created} created, {result.items_updated} updated, "
                f"{result.duplicates_skipped} unchanged, {len(result.errors)} errors",
                extra={
                    "duration_ms": result.duration_ms,
                    "status": "completed" if result.success else "failed",
                    "count": result.items_processed,
                },
            )

        if fatal is not None:
            raise FatalSyncFailure(
                f"{self.sync_type} sync aborted: {fatal}", result
            ) from fatal
        return result

    async def _run(self, options: SyncOptions, result: SyncResult, started: float) -> None:
        candidates = await self.build_candidates(options)
        batch_size = options.effective_batch_size
        budget = self.settings.SYNC_TIME_BUDGET_SECONDS

        logger.info(
            f"{len(candidates)} {self.entity} candidates, batch size {batch_size}",
            extra={"count": len(candidates)},
        )

        for index in range(0, len(candidates), batch_size):
            if index:
                if self._clock() - started >= budget:
                    result.interrupted = True
                    logger.warning(
                        f"Time budget of {budget}s exhausted, stopping with "
                        f"{len(candidates) - index} candidates left"
                    )
                    break
                if self._should_stop is not None and await self._should_stop():
                    result.cancelled = True
                    logger.info("Cancellation requested, stopping between batches")
                    break
                await self._sleep(self.settings.SYNC_INTER_BATCH_DELAY_SECONDS)

            for candidate in candidates[index : index + batch_size]:
                await self.process_candidate(candidate, options, result)

    # =========================================================================
    # Item isolation
    # =========================================================================

    def _record_error(self, result: SyncResult, label: str, error: BaseException) -> None:
        result.items_processed += 1
        result.errors.append(f"Failed to process {label}: {error}")
        logger.warning(
            f"Failed to process {label}: {type(error).__name__}: {error}",
            extra={"external_id": label},
        )

    async def _attempt(self, result: SyncResult, label: str, factory: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Await ``factory()``; on failure record one processed item with one
        error and return None. Fatal errors are recorded and re-raised.
        """
        try:
            return await factory()
        except FATAL_ERRORS as e:
            self._record_error(result, label, e)
            raise
        except Exception as e:
            self._record_error(result, label, e)
            return None

    async def _run_item(
        self,
        result: SyncResult,
        label: str,
        factory: Callable[[], Awaitable[UpsertOutcome]],
    ) -> Optional[UpsertOutcome]:
        outcome = await self._attempt(result, label, factory)
        if outcome is not None:
            result.items_processed += 1
            result.record(outcome)
        return outcome

    # =========================================================================
    # Upstream calls
    # =========================================================================

    async def _wait_for_rate_limit(self) -> None:
        while True:
            decision = await self.rate_limiter.limit(UPSTREAM_CLIENT_KEY)
            if decision.success:
                return
            wait = max(decision.seconds_until_reset(), MIN_RATE_LIMIT_WAIT_SECONDS)
            logger.info(
                f"Upstream rate budget spent, pausing {wait:.1f}s",
                extra={"delay_seconds": round(wait, 2)},
            )
            await self._sleep(wait)

    async def call_upstream(self, endpoint: str, request: Callable[[], Awaitable[T]]) -> T:
        """
        Make one upstream call: rate limit, circuit check, then the request,
        retrying transient failures up to SYNC_MAX_ITEM_ATTEMPTS times.
        """
        breaker = self.breakers.get(endpoint)
        backoff = BackoffState(initial_delay=self.settings.SYNC_RETRY_BASE_DELAY_SECONDS)
        max_attempts = self.settings.SYNC_MAX_ITEM_ATTEMPTS
        attempt = 0

        while True:
            attempt += 1
            await self._wait_for_rate_limit()
            if not breaker.allow():
                raise CircuitOpenError(endpoint)

            try:
                response = await request()
            except TransientUpstreamError as e:
                breaker.record_failure()
                delay = backoff.record_failure()
                if attempt >= max_attempts:
                    raise
                if e.retry_after is not None:
                    delay = e.retry_after
                logger.info(
                    f"Transient upstream error on '{endpoint}', retrying in {delay:.1f}s: {e}",
                    extra={"endpoint": endpoint, "attempt": attempt, "delay_seconds": round(delay, 2)},
                )
                await self._sleep(delay)
                continue
            except UpstreamError:
                # upstream answered; the endpoint itself is healthy
                breaker.record_success()
                raise
            except Exception:
                breaker.record_failure()
                raise
            except BaseException:
                # cancelled mid-call; no verdict on the endpoint
                breaker.release_probe()
                raise

            breaker.record_success()
            return response

    # =========================================================================
    # Run bookkeeping
    # =========================================================================

    def stale_before(self, options: SyncOptions, days: Optional[int] = None) -> Optional[datetime]:
        """Cutoff for the staleness filter, or None when everything is a candidate."""
        if options.force_refresh:
            return None
        window = self.settings.SYNC_STALENESS_DAYS if days is None else days
        return utcnow() - timedelta(days=window)

    async def _flush_circuit_events(self) -> None:
        events = self.events.drain()
        if not events:
            return
        try:
            await self.metrics.record_many(events)
        except Exception as e:
            logger.warning(f"Could not record {len(events)} circuit events: {e}")

    async def _advance_freshness(
        self, options: SyncOptions, result: SyncResult, completed_at: datetime
    ) -> None:
        touched = result.items_created + result.items_updated + result.duplicates_skipped
        if not touched:
            return
        try:
            await self.freshness.advance(self.entity, options.jurisdiction, completed_at)
        except Exception as e:
            logger.warning(f"Could not advance {self.entity} freshness pointer: {e}")

    def _log_entry(
        self,
        options: SyncOptions,
        result: SyncResult,
        started_at: datetime,
        completed_at: datetime,
        fatal: Optional[BaseException],
    ) -> Dict[str, Any]:
        status = SyncLogStatus.COMPLETED if result.success else SyncLogStatus.FAILED
        if fatal is not None:
            error_message: Optional[str] = f"Sync aborted: {type(fatal).__name__}: {fatal}"
        elif result.errors:
            error_message = f"{len(result.errors)} item errors; first: {result.errors[0]}"
        else:
            error_message = None

        return {
            "sync_type": self.sync_type,
            "sync_id": result.sync_id,
            "status": status.value,
            "started_at": started_at,
            "completed_at": completed_at,
            "duration_ms": result.duration_ms,
            "items_processed": result.items_processed,
            "items_created": result.items_created,
            "items_updated": result.items_updated,
            "duplicates_skipped": result.duplicates_skipped,
            "error_count": len(result.errors),
            "error_message": error_message,
            "details": {
                "options": options.to_payload(),
                "errors": result.errors[:MAX_LOGGED_ERRORS],
                "interrupted": result.interrupted,
                "cancelled": result.cancelled,
                "counters": dict(result.extra),
            },
        }
