"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from crmsync.api.routes import jobs
from crmsync.config import get_settings
from crmsync.db.engine import get_engine
from crmsync.scheduler.jobs import build_scheduler
from crmsync.scheduler.service import SchedulerService


def create_app(scheduler: Optional[SchedulerService] = None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        scheduler: Pre-built SchedulerService (tests pass one). By default the
                   lifespan builds one from settings and arms every job when
                   ENABLE_CRON is set.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = scheduler
        if service is None:
            settings = get_settings()
            service = build_scheduler(get_engine(), settings)
            if settings.enable_cron:
                service.start_all()
        app.state.scheduler = service
        service.startup()
        try:
            yield
        finally:
            service.shutdown()

    app = FastAPI(
        title="CRM Sync API",
        description="Scheduled CRM → local store synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])

    return app


# Module-level app instance for uvicorn
app = create_app()
