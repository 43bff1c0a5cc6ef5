"""
JudgeSync - Core Data Models

Enums, sync option payloads (shared by the HTTP trigger bodies and the queue
job payloads), queue rows and sync results.

Option payloads accept camelCase (wire format) and snake_case:

    CourtSyncOptions.model_validate({"batchSize": 5, "jurisdiction": "ca"})
    JudgeSyncOptions.model_validate({"judgeIds": ["p123"], "forceRefresh": True})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# =============================================================================
# Enums
# =============================================================================


class SyncJobType(str, Enum):
    COURT = "court"
    JUDGE = "judge"
    DECISION = "decision"


class SyncJobStatus(str, Enum):
    """Queue job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncLogStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class UpsertOutcome(str, Enum):
    """What an upsert keyed by external id did to the stored record."""

    CREATED = "created"
    UPDATED = "updated"
    DUPLICATE = "duplicate"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    CAUTION = "caution"
    WARNING = "warning"
    CRITICAL = "critical"


# =============================================================================
# Sync Options
# =============================================================================


class SyncOptions(BaseModel):
    """Options common to every sync run."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    DEFAULT_BATCH_SIZE: ClassVar[int] = 10

    batch_size: Optional[int] = Field(default=None, ge=1, le=100)
    jurisdiction: str = Field(default="CA", min_length=2, max_length=8)
    force_refresh: bool = False
    ids: Optional[List[str]] = None

    @field_validator("jurisdiction")
    @classmethod
    def _upper_jurisdiction(cls, value: str) -> str:
        return value.upper()

    @field_validator("ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError("ids must be a list")
        ids = [str(v).strip() for v in value if str(v).strip()]
        return ids or None

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size or self.DEFAULT_BATCH_SIZE

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for a queue job payload (camelCase, defaults dropped)."""
        return self.model_dump(by_alias=True, exclude_defaults=True)


class CourtSyncOptions(SyncOptions):
    DEFAULT_BATCH_SIZE: ClassVar[int] = 20

    ids: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("ids", "courtIds", "court_ids"),
        serialization_alias="courtIds",
    )


class JudgeSyncOptions(SyncOptions):
    DEFAULT_BATCH_SIZE: ClassVar[int] = 10

    ids: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("ids", "judgeIds", "judge_ids"),
        serialization_alias="judgeIds",
    )
    limit: int = Field(default=100, ge=1, le=1000)


class DecisionSyncOptions(SyncOptions):
    DEFAULT_BATCH_SIZE: ClassVar[int] = 5

    ids: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("ids", "judgeIds", "judge_ids"),
        serialization_alias="judgeIds",
    )
    days_since_last: Optional[int] = Field(default=None, ge=0, le=3650)
    max_decisions_per_judge: int = Field(default=150, ge=1, le=500)
    years_back: Optional[int] = Field(default=None, ge=1, le=50)
    limit: int = Field(default=100, ge=1, le=1000)


OPTIONS_BY_TYPE: Dict[SyncJobType, type[SyncOptions]] = {
    SyncJobType.COURT: CourtSyncOptions,
    SyncJobType.JUDGE: JudgeSyncOptions,
    SyncJobType.DECISION: DecisionSyncOptions,
}


# =============================================================================
# Queue
# =============================================================================


class SyncJob(BaseModel):
    """A row of the sync_queue table."""

    model_config = ConfigDict(use_enum_values=False)

    id: str
    type: SyncJobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 100
    status: SyncJobStatus = SyncJobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    worker_id: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncJob":
        return cls.model_validate(row)


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result handed to JobQueue.complete()."""

    succeeded: bool
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, result: Optional[Dict[str, Any]] = None) -> "JobOutcome":
        return cls(succeeded=True, result=result)

    @classmethod
    def failure(cls, error: str, result: Optional[Dict[str, Any]] = None) -> "JobOutcome":
        return cls(succeeded=False, error=error, result=result)


# =============================================================================
# Sync Results
# =============================================================================


@dataclass
class SyncResult:
    """
    Counters for one sync run.

    items_processed always equals
    items_created + items_updated + duplicates_skipped + len(errors).
    """

    sync_type: str
    sync_id: str
    success: bool = False
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    duplicates_skipped: int = 0
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)
    interrupted: bool = False
    cancelled: bool = False
    extra: Dict[str, int] = field(default_factory=dict)

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.CREATED:
            self.items_created += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.items_updated += 1
        else:
            self.duplicates_skipped += 1

    @property
    def http_status(self) -> int:
        return 200 if not self.errors else 207

    def counters(self, prefix: str) -> Dict[str, Any]:
        """Response counters, e.g. courtsProcessed / courtsCreated for prefix 'courts'."""
        data: Dict[str, Any] = {
            f"{prefix}Processed": self.items_processed,
            f"{prefix}Created": self.items_created,
            f"{prefix}Updated": self.items_updated,
            "duplicatesSkipped": self.duplicates_skipped,
            "duration": self.duration_ms,
            "interrupted": self.interrupted,
        }
        data.update(self.extra)
        return data

    def as_dict(self) -> Dict[str, Any]:
        return {
            "syncType": self.sync_type,
            "syncId": self.sync_id,
            "success": self.success,
            "itemsProcessed": self.items_processed,
            "itemsCreated": self.items_created,
            "itemsUpdated": self.items_updated,
            "duplicatesSkipped": self.duplicates_skipped,
            "durationMs": self.duration_ms,
            "errors": list(self.errors),
            "interrupted": self.interrupted,
            "cancelled": self.cancelled,
            **self.extra,
        }
