"""
Import run schemas (persisted in the import_logs table).

One run per ingestion attempt. The status only moves forward:

    processing -> processing   (progress update)
    processing -> completed
    processing -> failed

completed and failed are terminal. PENDING exists for clients that display
queued work; runs are created directly in PROCESSING because creation and
start happen in a single insert.
"""

from pydantic import BaseModel, Field
from typing import Any, Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, PaginatedResponse


class ImportStatus(str, Enum):
    """Import run status values."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})


class ImportRunResponse(BaseSchema):
    """Import run as stored."""

    id: str = Field(..., description="Import run UUID")
    supplier_id: str
    file_name: str
    status: ImportStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    error_details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> Optional[int]:
        """Whole seconds between start and completion (None while running)."""
        if not self.started_at or not self.completed_at:
            return None
        return int((self.completed_at - self.started_at).total_seconds())


class ImportRunListResponse(PaginatedResponse):
    """One page of import runs."""

    data: list[ImportRunResponse]


class ProgressEvent(BaseModel):
    """
    Snapshot pushed to progress consumers.

    Consumers may receive the same snapshot more than once; only the latest
    counts matter and they never decrease within a run.
    """

    import_run_id: str
    total_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    status: ImportStatus

    @classmethod
    def from_run(cls, run: ImportRunResponse) -> "ProgressEvent":
        return cls(
            import_run_id=run.id,
            total_rows=run.total_rows,
            imported_rows=run.imported_rows,
            skipped_rows=run.skipped_rows,
            status=run.status,
        )


class ReconcileResponse(BaseModel):
    """Result of the stale-run sweep."""

    failed_runs: list[str]
    cutoff: datetime
