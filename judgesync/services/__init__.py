"""
JudgeSync - Services
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitEventBuffer
from .courtlistener import CourtListenerClient
from .job_queue import JobQueue
from .rate_limiter import RateLimitDependency, SlidingWindowRateLimiter, get_rate_limiter
from .sync_status import SyncStatusAggregator
from .webhook_ingestion import WebhookIngestionService

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitEventBuffer",
    "CourtListenerClient",
    # Queue
    "JobQueue",
    # Rate limiting
    "RateLimitDependency",
    "SlidingWindowRateLimiter",
    "get_rate_limiter",
    "SyncStatusAggregator",
    "WebhookIngestionService",
]
