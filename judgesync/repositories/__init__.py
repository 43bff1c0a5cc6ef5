"""Persistence for mirrored records, audit rows and telemetry."""

from .audit import (
    FreshnessRepository,
    MetricsRepository,
    SyncLogRepository,
    WebhookDeliveryRepository,
)
from .records import CourtRepository, DecisionRepository, JudgeRepository

__all__ = [
    "CourtRepository",
    "DecisionRepository",
    "FreshnessRepository",
    "JudgeRepository",
    "MetricsRepository",
    "SyncLogRepository",
    "WebhookDeliveryRepository",
]
