"""
JudgeSync - Rate Limiter

Sliding-window admission control over a shared Redis counter store. The same
limiter protects our own endpoints (keyed by client IP) and throttles our
outbound CourtListener calls (keyed by a fixed client key), so the budget is
global across every process.

Window keys look like ``{scope}:{clientKey}:{window}`` where ``window`` is the
index of the fixed window the request falls in. The estimate for a request is
the current window's count plus the previous window's count weighted by how
much of the previous window still overlaps the sliding window. Check and
increment run atomically in one Lua script; rejected requests never increment.

Usage:
    limiter = get_rate_limiter("courtlistener")
    result = await limiter.limit("sync-worker")
    if not result.success:
        await asyncio.sleep(result.seconds_until_reset())
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as aioredis
from fastapi import Request
from redis.exceptions import RedisError

from ..config import get_settings
from ..core.errors import RateLimiterUnavailable, RateLimitExceeded

logger = logging.getLogger(__name__)

# KEYS[1] current window, KEYS[2] previous window
# ARGV[1] token budget, ARGV[2] weight of the previous window, ARGV[3] key TTL (ms)
SLIDING_WINDOW_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local previous = tonumber(redis.call('GET', KEYS[2]) or '0')
local tokens = tonumber(ARGV[1])
local estimate = math.floor(previous * tonumber(ARGV[2])) + current
if estimate >= tokens then
    return {0, 0}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[3])
end
return {1, tokens - estimate - 1}
"""


@dataclass(frozen=True)
class RateLimitPolicy:
    """Token budget for one scope."""

    scope: str
    tokens: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: int  # epoch milliseconds at which the current window ends

    def seconds_until_reset(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, self.reset / 1000.0 - now)


def build_rate_limit_key(scope: str, client_key: str, window: int) -> str:
    return f"{scope}:{client_key}:{window}"


class SlidingWindowRateLimiter:
    """
    Sliding-window limiter for one policy.

    When Redis cannot be reached, ``fail_open`` decides: True allows the
    request and logs a warning the first time only, False raises
    RateLimiterUnavailable.
    """

    def __init__(
        self,
        redis_client: "aioredis.Redis",
        policy: RateLimitPolicy,
        fail_open: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self.policy = policy
        self.fail_open = fail_open
        self._clock = clock
        self._warned_unavailable = False

    async def limit(self, client_key: str) -> RateLimitResult:
        window_ms = self.policy.window_seconds * 1000
        now_ms = int(self._clock() * 1000)
        window = now_ms // window_ms
        elapsed = now_ms - window * window_ms
        previous_weight = (window_ms - elapsed) / window_ms
        reset = (window + 1) * window_ms

        current_key = build_rate_limit_key(self.policy.scope, client_key, window)
        previous_key = build_rate_limit_key(self.policy.scope, client_key, window - 1)

        try:
            # Redis EVAL runs the Lua script server-side
            allowed, remaining = await self._redis.eval(
                SLIDING_WINDOW_SCRIPT,
                2,
                current_key,
                previous_key,
                self.policy.tokens,
                previous_weight,
                window_ms * 2,
            )
        except RedisError as e:
            return self._on_store_unavailable(e, reset)

        return RateLimitResult(
            success=bool(int(allowed)),
            limit=self.policy.tokens,
            remaining=max(0, int(remaining)),
            reset=reset,
        )

    def _on_store_unavailable(self, error: Exception, reset: int) -> RateLimitResult:
        if not self.fail_open:
            logger.error(
                f"Rate limit store unavailable for scope '{self.policy.scope}': {error}"
            )
            raise RateLimiterUnavailable() from error

        if not self._warned_unavailable:
            logger.warning(
                f"Rate limit store unavailable for scope '{self.policy.scope}', "
                f"failing open: {error}"
            )
            self._warned_unavailable = True

        return RateLimitResult(
            success=True,
            limit=self.policy.tokens,
            remaining=self.policy.tokens,
            reset=reset,
        )


# =============================================================================
# Policies & Registry
# =============================================================================

UPSTREAM_SCOPE = "courtlistener"


def default_policies() -> Dict[str, RateLimitPolicy]:
    settings = get_settings()
    return {
        "public": RateLimitPolicy("public", 60, 60),
        "webhook": RateLimitPolicy("webhook", 20, 60),
        "sync": RateLimitPolicy("sync", 5, 3600),
        "admin": RateLimitPolicy("admin", 200, 60),
        UPSTREAM_SCOPE: RateLimitPolicy(
            UPSTREAM_SCOPE,
            settings.COURTLISTENER_RATE_LIMIT_TOKENS,
            settings.COURTLISTENER_RATE_LIMIT_WINDOW_SECONDS,
        ),
    }


_redis_client: Optional["aioredis.Redis"] = None
_limiters: Dict[str, SlidingWindowRateLimiter] = {}


def get_redis() -> "aioredis.Redis":
    """Shared Redis client, created lazily from REDIS_URL."""
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
    return _redis_client


def set_redis_client(client: Optional["aioredis.Redis"]) -> None:
    """Swap the shared client (tests, custom wiring). Drops cached limiters."""
    global _redis_client
    _redis_client = client
    _limiters.clear()


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    _limiters.clear()


def get_rate_limiter(scope: str) -> SlidingWindowRateLimiter:
    limiter = _limiters.get(scope)
    if limiter is None:
        policies = default_policies()
        if scope not in policies:
            raise KeyError(f"Unknown rate limit scope: {scope}")
        limiter = SlidingWindowRateLimiter(
            get_redis(),
            policies[scope],
            fail_open=get_settings().RATE_LIMIT_FAIL_OPEN,
        )
        _limiters[scope] = limiter
    return limiter


class RateLimitDependency:
    """
    FastAPI dependency enforcing a policy per client IP.

    Usage:
        enforce_webhook_limit = RateLimitDependency("webhook")

        @router.post("/hook", dependencies=[Depends(enforce_webhook_limit)])
    """

    def __init__(self, scope: str):
        self.scope = scope

    async def __call__(self, request: Request) -> None:
        client_key = request.client.host if request.client else "anonymous"
        result = await get_rate_limiter(self.scope).limit(client_key)
        if not result.success:
            logger.info(
                f"Rate limit exceeded for scope '{self.scope}'",
                extra={"endpoint": request.url.path},
            )
            raise RateLimitExceeded(reset=result.reset, limit=result.limit)
