"""
Main entrypoint.

Usage:
    python -m crmsync                      # scheduler only, every job armed
    python -m crmsync serve                # API + scheduler (jobs armed if ENABLE_CRON)
    python -m crmsync run opportunities-sync   # one manual run, then exit
    python -m crmsync jobs                 # list jobs, schedules, next run
"""
import argparse
import asyncio
import logging
import sys

from crmsync.config import get_settings

logger = logging.getLogger("crmsync")


async def _run_scheduler() -> None:
    from crmsync.db.engine import get_engine
    from crmsync.scheduler.jobs import build_scheduler

    service = build_scheduler(get_engine())
    service.startup()
    service.start_all()
    for job in service.status_all():
        logger.info("%s armed: %s (next run %s)", job.name, job.schedule, job.next_run_at or "unknown")

    logger.info("Scheduler is running. Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    finally:
        service.shutdown()
        logger.info("Goodbye.")


async def _run_once(job_name: str) -> int:
    from crmsync.db.engine import get_engine
    from crmsync.errors import ConfigurationError, UnknownJob
    from crmsync.scheduler.jobs import build_scheduler

    service = build_scheduler(get_engine())
    try:
        result = await service.run_now(job_name)
    except UnknownJob as exc:
        logger.error("%s", exc)
        return 2
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1

    print(
        f"{result.job_name}: {result.status} "
        f"(inserted={result.inserted} updated={result.updated} "
        f"errors={result.errors} duration={result.duration_seconds:.2f}s)"
    )
    return 0


def _list_jobs() -> None:
    from crmsync.db.engine import get_engine
    from crmsync.scheduler.jobs import build_scheduler

    service = build_scheduler(get_engine())
    for job in service.status_all():
        next_run = job.next_run_at.isoformat() if job.next_run_at else "unknown"
        print(f"{job.name:<22} {job.schedule:<18} next: {next_run}")


def _serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("crmsync.api.main:app", host=host, port=port)


def main(argv=None) -> int:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    parser = argparse.ArgumentParser(prog="crmsync", description="CRM sync scheduler")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("scheduler", help="Run the scheduler with every job armed (default)")
    serve = sub.add_parser("serve", help="Run the HTTP API and the scheduler")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    run = sub.add_parser("run", help="Run one job now and exit")
    run.add_argument("job_name")
    sub.add_parser("jobs", help="List registered jobs")
    args = parser.parse_args(argv)

    if args.command == "serve":
        _serve(args.host, args.port)
        return 0
    if args.command == "run":
        return asyncio.run(_run_once(args.job_name))
    if args.command == "jobs":
        _list_jobs()
        return 0

    try:
        asyncio.run(_run_scheduler())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
