"""
SchedulerService: the registry of named sync jobs and their timers.

Each job moves through Stopped → Armed → Executing → Armed. stop() returns it
to Stopped from any state by detaching its APScheduler timer; it never
interrupts a run already in flight. run_now() executes from Armed or
Stopped, but only if the job's ExecutionLock is free: a manual run against
an executing job raises ConcurrencyRejection, and a timer fire against an
executing job is skipped. Nothing is ever queued.

One instance is built at process start (see crmsync.scheduler.jobs) and
handed to whatever drives it: the CLI, or the FastAPI app via app.state.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from crmsync.errors import ConcurrencyRejection, UnknownJob
from crmsync.scheduler.lock import ExecutionLock
from crmsync.scheduler.next_run import Unsupported, parse_schedule

logger = logging.getLogger(__name__)

MANUAL = "manual"
SCHEDULED = "scheduled"

JobCallback = Callable[[str], Awaitable[Any]]


@dataclass
class Job:
    name: str
    schedule: str
    callback: JobCallback
    armed: bool = False
    executing: bool = False
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only view of a Job, safe to hand to callers."""

    name: str
    schedule: str
    armed: bool
    executing: bool
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    schedule_supported: bool


class SchedulerService:
    """Owns the job map, the per-job execution lock and the APScheduler instance."""

    def __init__(
        self,
        *,
        timezone: str = "UTC",
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            timezone: IANA zone applied to every trigger and next-run estimate.
            scheduler: APScheduler instance to attach timers to; a fresh
                       AsyncIOScheduler by default.
            clock: Returns "now"; tests inject a fixed time.
        """
        self.timezone = ZoneInfo(timezone)
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)
        self._clock = clock or (lambda: datetime.now(self.timezone))
        self._jobs: Dict[str, Job] = {}
        self._lock = ExecutionLock()
        self.enabled = False
        self._started = False

    # ─── Registry ─────────────────────────────────────────────────────────────

    def register(self, name: str, schedule: str, callback: JobCallback) -> JobSnapshot:
        """
        Add a job, or replace an existing one with the same name.

        A replaced job keeps its armed state and run bookkeeping; its timer
        is torn down and recreated with the new schedule.

        Raises:
            ValueError: if APScheduler cannot parse the cron expression.
        """
        CronTrigger.from_crontab(schedule, timezone=self.timezone)

        previous = self._jobs.get(name)
        job = Job(name=name, schedule=schedule, callback=callback)
        if previous is not None:
            self._detach(name)
            job.executing = previous.executing
            job.last_run_at = previous.last_run_at
        job.next_run_at = self._estimate(schedule)
        self._jobs[name] = job

        if previous is not None and previous.armed:
            self.start(name)
        return self.status(name)

    def start(self, name: str) -> None:
        """Arm a job: attach its cron timer."""
        job = self._get(name)
        # Before startup() APScheduler queues add_job calls without de-duplicating ids
        self._detach(name)
        self.scheduler.add_job(
            self._fire,
            trigger=CronTrigger.from_crontab(job.schedule, timezone=self.timezone),
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        job.armed = True
        job.next_run_at = self._estimate(job.schedule)
        logger.info("Job %s armed (%s)", name, job.schedule)

    def stop(self, name: str) -> None:
        """Disarm a job. A run already in flight continues to completion."""
        job = self._get(name)
        self._detach(name)
        job.armed = False
        logger.info("Job %s stopped", name)

    def start_all(self) -> None:
        self.enabled = True
        for name in self._jobs:
            self.start(name)

    def stop_all(self) -> None:
        self.enabled = False
        for name in self._jobs:
            self.stop(name)

    def status(self, name: str) -> JobSnapshot:
        job = self._get(name)
        return JobSnapshot(
            name=job.name,
            schedule=job.schedule,
            armed=job.armed,
            executing=job.executing,
            last_run_at=job.last_run_at,
            next_run_at=job.next_run_at,
            schedule_supported=not isinstance(parse_schedule(job.schedule), Unsupported),
        )

    def status_all(self) -> List[JobSnapshot]:
        return [self.status(name) for name in self._jobs]

    # ─── Execution ────────────────────────────────────────────────────────────

    async def run_now(self, name: str) -> Any:
        """
        Run a job immediately and wait for it.

        Returns:
            Whatever the job callback returns (a SyncResult for pipelines).

        Raises:
            UnknownJob: if no job has this name.
            ConcurrencyRejection: if the job is already executing.
        """
        job = self._get(name)
        if not self._lock.try_acquire(name):
            raise ConcurrencyRejection(name)
        try:
            return await self._execute(job, MANUAL)
        finally:
            self._lock.release(name)

    async def _fire(self, name: str) -> None:
        """Timer entrypoint. Skips when the job is executing; never raises."""
        job = self._jobs.get(name)
        if job is None or not job.armed:
            return
        if not self._lock.try_acquire(name):
            logger.info("Skipping scheduled run of %s: already executing", name)
            return
        try:
            await self._execute(job, SCHEDULED)
        except Exception:
            logger.exception("Scheduled run of %s failed", name)
        finally:
            self._lock.release(name)

    async def _execute(self, job: Job, trigger: str) -> Any:
        job.executing = True
        job.last_run_at = self._clock()
        try:
            return await job.callback(trigger)
        finally:
            job.executing = False
            # The job may have been re-registered while it ran
            current = self._jobs.get(job.name, job)
            current.executing = False
            current.next_run_at = self._estimate(current.schedule)

    # ─── Timer engine lifecycle ───────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return self._started

    def startup(self) -> None:
        """Start APScheduler. Must be called from inside a running event loop."""
        if not self._started:
            self.scheduler.start()
            self._started = True

    def shutdown(self) -> None:
        """
        Stop APScheduler without waiting for running jobs.

        AsyncIOScheduler may finish its shutdown on a later loop iteration,
        so scheduler.running can still read True here; the service's own
        flag is what makes a second call a no-op.
        """
        if self._started:
            self._started = False
            self.scheduler.shutdown(wait=False)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _get(self, name: str) -> Job:
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJob(name)
        return job

    def _detach(self, name: str) -> None:
        try:
            self.scheduler.remove_job(name)
        except JobLookupError:
            pass

    def _estimate(self, schedule: str) -> Optional[datetime]:
        return parse_schedule(schedule).next_after(self._clock())
