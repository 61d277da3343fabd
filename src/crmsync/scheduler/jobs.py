"""
Sync job wiring.

Registers one job per pipeline on a SchedulerService, reading each job's
cron expression from settings. Jobs are registered stopped; the caller
decides whether to arm them (start_all) once the event loop is running.

The service runs inside the same process as the API (wired in
crmsync.api.main) or standalone (python -m crmsync scheduler).
"""
import functools
import logging

from crmsync.config import get_settings
from crmsync.remote.client import RemoteClient
from crmsync.scheduler.service import SchedulerService
from crmsync.sync.history import SyncResult
from crmsync.sync.pipelines import PIPELINES

logger = logging.getLogger(__name__)

SCHEDULE_SETTINGS = {
    "sales-reps-sync": "sales_reps_sync_schedule",
    "units-sync": "units_sync_schedule",
    "funnels-sync": "funnels_sync_schedule",
    "loss-reasons-sync": "loss_reasons_sync_schedule",
    "funnel-columns-sync": "funnel_columns_sync_schedule",
    "opportunities-sync": "opportunities_sync_schedule",
}


def build_scheduler(engine, settings=None) -> SchedulerService:
    """
    Create the SchedulerService with every sync job registered.

    Args:
        engine: SQLAlchemy engine passed to each pipeline.
        settings: Settings override; defaults to get_settings().

    Returns:
        SchedulerService with all jobs registered and stopped, timer
        engine not yet started.
    """
    settings = settings or get_settings()
    service = SchedulerService(timezone=settings.cron_timezone)

    for job_name, pipeline_cls in PIPELINES.items():
        schedule = getattr(settings, SCHEDULE_SETTINGS[job_name])
        service.register(
            job_name,
            schedule,
            functools.partial(_run_pipeline, pipeline_cls, engine, settings),
        )
        logger.debug("Registered %s (%s)", job_name, schedule)

    return service


async def _run_pipeline(pipeline_cls, engine, settings, trigger: str) -> SyncResult:
    """Job body: open a remote client, run the pipeline once, close the client."""
    async with RemoteClient.from_settings(settings) as client:
        pipeline = pipeline_cls(client=client, engine=engine, settings=settings)
        return await pipeline.run(trigger)
