"""
JudgeSync - Circuit Breaker

Per-upstream-endpoint breaker gating CourtListener calls.

    closed     every call allowed; consecutive failures are counted
    open       calls rejected until the cool-down elapses
    half_open  one probe call allowed; success closes, failure reopens

Every state change of interest is also emitted as a named circuit event for
dashboards (see CircuitEventBuffer). The events are observability only.

Usage:
    breaker = breakers.get("people")
    if not breaker.allow():
        raise CircuitOpenError("people")
    try:
        person = await client.get_person(pid)
        breaker.record_success()
    except TransientUpstreamError:
        breaker.record_failure()
        raise
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

EVENT_FETCH_FAILED = "courtlistener_fetch_failed"
EVENT_CIRCUIT_OPEN = "courtlistener_circuit_open"
EVENT_CIRCUIT_SHORTCIRCUIT = "courtlistener_circuit_shortcircuit"

CIRCUIT_EVENTS = (EVENT_FETCH_FAILED, EVENT_CIRCUIT_OPEN, EVENT_CIRCUIT_SHORTCIRCUIT)

EventSink = Callable[[str, str], None]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker with a cool-down timer."""

    def __init__(
        self,
        endpoint: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        event_sink: Optional[EventSink] = None,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.endpoint = endpoint
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._event_sink = event_sink
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allow(self) -> bool:
        if self._state is CircuitState.CLOSED:
            return True

        if self._state is CircuitState.OPEN:
            assert self._opened_at is not None
            if self._clock() - self._opened_at >= self.cooldown_seconds:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                logger.info(
                    f"Circuit half-open for '{self.endpoint}', sending probe",
                    extra={"endpoint": self.endpoint},
                )
                return True
            self._emit(EVENT_CIRCUIT_SHORTCIRCUIT)
            return False

        # half-open: only the single probe may be in flight
        if self._probe_in_flight:
            self._emit(EVENT_CIRCUIT_SHORTCIRCUIT)
            return False
        self._probe_in_flight = True
        return True

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info(
                f"Circuit closed for '{self.endpoint}'",
                extra={"endpoint": self.endpoint},
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        self._emit(EVENT_FETCH_FAILED)

        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state is CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._open()

    def release_probe(self) -> None:
        """Give back a half-open probe whose call ended without a verdict."""
        if self._state is CircuitState.HALF_OPEN:
            self._probe_in_flight = False

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False
        self._emit(EVENT_CIRCUIT_OPEN)
        logger.warning(
            f"Circuit opened for '{self.endpoint}' after "
            f"{self._consecutive_failures} consecutive failures",
            extra={"endpoint": self.endpoint, "count": self._consecutive_failures},
        )

    def _emit(self, event: str) -> None:
        if self._event_sink is not None:
            self._event_sink(event, self.endpoint)


class CircuitBreakerRegistry:
    """One breaker per upstream endpoint, created on first use."""

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        event_sink: Optional[EventSink] = None,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._event_sink = event_sink
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, endpoint: str) -> CircuitBreaker:
        breaker = self._breakers.get(endpoint)
        if breaker is None:
            breaker = CircuitBreaker(
                endpoint,
                failure_threshold=self.failure_threshold,
                cooldown_seconds=self.cooldown_seconds,
                clock=self._clock,
                event_sink=self._event_sink,
            )
            self._breakers[endpoint] = breaker
        return breaker

    def snapshot(self) -> Dict[str, str]:
        return {name: b.state.value for name, b in self._breakers.items()}


class CircuitEventBuffer:
    """
    Collects circuit events in memory; the sync run flushes them to the
    performance_metrics table when it finishes.
    """

    def __init__(self) -> None:
        self._events: List[Tuple[str, str, datetime]] = []

    def __call__(self, event: str, endpoint: str) -> None:
        self._events.append((event, endpoint, datetime.now(timezone.utc)))

    def __len__(self) -> int:
        return len(self._events)

    def drain(self) -> List[Tuple[str, str, datetime]]:
        events, self._events = self._events, []
        return events
