from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class RecordOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_INVALID = "skipped-invalid"
    CONFLICT = "conflict"
    FAILED = "failed"


class RemovalPolicy(str, Enum):
    """What happens to stored pages missing from a full-set fetch."""

    KEEP = "keep"
    TOMBSTONE = "tombstone"


class RecordFailure(BaseModel):
    page_id: Optional[str] = None
    outcome: RecordOutcome
    reason: str


class SyncReport(BaseModel):
    datasource_id: str
    status: SyncState = SyncState.COMPLETED
    created: int = 0
    updated: int = 0
    skipped_invalid: int = 0
    conflicts: int = 0
    failed: int = 0
    tombstoned: int = 0
    failures: List[RecordFailure] = Field(default_factory=list)
    cursor: Optional[str] = None
    incremental: bool = False
    started_at: datetime
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    def record(self, outcome: RecordOutcome) -> None:
        """Bump the counter for *outcome*."""
        field = {
            RecordOutcome.CREATED: "created",
            RecordOutcome.UPDATED: "updated",
            RecordOutcome.SKIPPED_INVALID: "skipped_invalid",
            RecordOutcome.CONFLICT: "conflicts",
            RecordOutcome.FAILED: "failed",
        }[outcome]
        setattr(self, field, getattr(self, field) + 1)


class SyncRunResponse(BaseModel):
    """Response of the poll trigger: one report per datasource synced."""

    since: Optional[str] = None
    reports: List[SyncReport]
