"""Job control and sync history routes."""
import dataclasses
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlmodel import Session, select

from crmsync.db.engine import get_session
from crmsync.errors import ConcurrencyRejection, ConfigurationError, UnknownJob
from crmsync.models.sync import SyncRun
from crmsync.scheduler.service import JobSnapshot, SchedulerService

router = APIRouter()


class JobStatusResponse(BaseModel):
    name: str
    schedule: str
    armed: bool
    executing: bool
    schedule_supported: bool
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    last_completed_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_trigger: Optional[str] = None
    last_inserted: Optional[int] = None
    last_updated: Optional[int] = None
    last_errors: Optional[int] = None


class RunResponse(BaseModel):
    run_id: int
    job_name: str
    trigger: str
    status: str
    inserted: int
    updated: int
    errors: int
    duration_seconds: float
    error_message: Optional[str]


def get_scheduler(request: Request) -> SchedulerService:
    """The SchedulerService built in the app lifespan."""
    return request.app.state.scheduler


def _latest_run(session: Session, job_name: str) -> Optional[SyncRun]:
    return session.exec(
        select(SyncRun)
        .where(SyncRun.job_name == job_name)
        .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
    ).first()


def _job_response(snapshot: JobSnapshot, session: Session) -> JobStatusResponse:
    response = JobStatusResponse(**dataclasses.asdict(snapshot))
    run = _latest_run(session, snapshot.name)
    if run:
        # Persisted history outlives the in-memory job state across restarts
        response.last_completed_at = run.completed_at
        response.last_status = run.status
        response.last_trigger = run.trigger
        response.last_inserted = run.records_inserted
        response.last_updated = run.records_updated
        response.last_errors = run.records_errors
    return response


@router.get("", response_model=List[JobStatusResponse])
def list_jobs(
    scheduler: SchedulerService = Depends(get_scheduler),
    session: Session = Depends(get_session),
):
    """Status of every registered job plus its most recent history row."""
    return [_job_response(s, session) for s in scheduler.status_all()]


@router.get("/history", response_model=List[SyncRun])
def sync_history(
    job_name: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=500),
    session: Session = Depends(get_session),
):
    """Most recent sync runs first, optionally for one job."""
    query = select(SyncRun)
    if job_name:
        query = query.where(SyncRun.job_name == job_name)
    return session.exec(
        query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
    ).all()


@router.post("/start")
def start_all(scheduler: SchedulerService = Depends(get_scheduler)):
    scheduler.start_all()
    return {"message": "All jobs armed"}


@router.post("/stop")
def stop_all(scheduler: SchedulerService = Depends(get_scheduler)):
    scheduler.stop_all()
    return {"message": "All jobs stopped"}


@router.get("/{name}", response_model=JobStatusResponse)
def job_status(
    name: str,
    scheduler: SchedulerService = Depends(get_scheduler),
    session: Session = Depends(get_session),
):
    try:
        snapshot = scheduler.status(name)
    except UnknownJob as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _job_response(snapshot, session)


@router.post("/{name}/start")
def start_job(name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        scheduler.start(name)
    except UnknownJob as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"message": f"Job '{name}' armed"}


@router.post("/{name}/stop")
def stop_job(name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        scheduler.stop(name)
    except UnknownJob as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"message": f"Job '{name}' stopped"}


@router.post("/{name}/run", response_model=RunResponse)
async def run_job(name: str, scheduler: SchedulerService = Depends(get_scheduler)):
    """
    Run a job now and wait for it to finish.
    409 if the job is already executing; nothing is queued.
    """
    try:
        result = await scheduler.run_now(name)
    except UnknownJob as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ConcurrencyRejection as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return RunResponse(**dataclasses.asdict(result))
