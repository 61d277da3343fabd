"""
Execution history: exactly one SyncRun row per pipeline invocation.

begin() inserts the row with status "running"; complete() or fail()
finalizes it once. A finalized row is never written again.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from crmsync.errors import RunAlreadyFinalized
from crmsync.models.sync import SyncRun, utc_now
from crmsync.sync.reconcile import Outcome

RUNNING = "running"
SUCCESS = "success"
ERROR = "error"
COMPLETED_WITH_ERRORS = "completed_with_errors"


@dataclass
class SyncCounts:
    """Per-run tallies. Every record a run observes lands in exactly one bucket."""

    inserted: int = 0
    updated: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.errors

    def add(self, outcome: Outcome) -> None:
        if outcome is Outcome.INSERTED:
            self.inserted += 1
        else:
            self.updated += 1


@dataclass(frozen=True)
class RunHandle:
    run_id: int
    job_name: str
    trigger: str
    started_at: datetime


@dataclass(frozen=True)
class SyncResult:
    run_id: int
    job_name: str
    trigger: str
    status: str
    inserted: int
    updated: int
    errors: int
    duration_seconds: float
    error_message: Optional[str] = None


class HistoryRecorder:
    """Writes SyncRun rows."""

    def __init__(self, engine):
        self.engine = engine

    def begin(self, job_name: str, trigger: str) -> RunHandle:
        run = SyncRun(
            job_name=job_name,
            trigger=trigger,
            started_at=utc_now(),
            status=RUNNING,
        )
        with Session(self.engine) as s:
            s.add(run)
            s.commit()
            s.refresh(run)
        return RunHandle(
            run_id=run.id,
            job_name=job_name,
            trigger=trigger,
            started_at=run.started_at,
        )

    def complete(self, handle: RunHandle, counts: SyncCounts) -> SyncResult:
        """Finalize as "success", or "completed_with_errors" when any error was counted."""
        status = COMPLETED_WITH_ERRORS if counts.errors > 0 else SUCCESS
        return self._finalize(handle, status=status, counts=counts)

    def fail(
        self,
        handle: RunHandle,
        message: str,
        counts: Optional[SyncCounts] = None,
    ) -> SyncResult:
        """Finalize as "error" with the given message."""
        return self._finalize(
            handle, status=ERROR, counts=counts or SyncCounts(), error_message=message
        )

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _finalize(
        self,
        handle: RunHandle,
        *,
        status: str,
        counts: SyncCounts,
        error_message: Optional[str] = None,
    ) -> SyncResult:
        with Session(self.engine) as s:
            db_run = s.get(SyncRun, handle.run_id)
            if db_run is None or db_run.status != RUNNING:
                raise RunAlreadyFinalized(
                    f"Sync run {handle.run_id} ({handle.job_name}) is already finalized"
                )
            completed_at = max(utc_now(), db_run.started_at)
            duration = round((completed_at - db_run.started_at).total_seconds(), 3)

            db_run.status = status
            db_run.completed_at = completed_at
            db_run.records_inserted = counts.inserted
            db_run.records_updated = counts.updated
            db_run.records_errors = counts.errors
            db_run.duration_seconds = duration
            db_run.error_message = error_message
            s.add(db_run)
            s.commit()

        return SyncResult(
            run_id=handle.run_id,
            job_name=handle.job_name,
            trigger=handle.trigger,
            status=status,
            inserted=counts.inserted,
            updated=counts.updated,
            errors=counts.errors,
            duration_seconds=duration,
            error_message=error_message,
        )
