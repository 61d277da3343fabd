"""Sync run history model."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Timezone-aware UTC now. datetime columns reject naive values."""
    return datetime.now(timezone.utc)


class SyncRun(SQLModel, table=True):
    """One row per pipeline run. Append-only once it leaves 'running'."""

    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(index=True)
    started_at: datetime = Field(default_factory=utc_now, index=True)
    completed_at: Optional[datetime] = None
    status: str = "running"  # "running", "success", "error", "completed_with_errors"
    trigger: str = "manual"  # "manual", "scheduled"
    records_inserted: int = 0
    records_updated: int = 0
    records_errors: int = 0
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None
