"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from crmsync.config import get_settings

_engine = None


def build_engine(database_url: str):
    """Create an engine for the given URL and make sure all tables exist."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # sessions are opened from the event loop and API workers
    engine = create_engine(database_url, connect_args=connect_args)
    # Import all models so metadata is populated before create_all
    from crmsync.models.crm import (  # noqa
        Funnel, FunnelColumn, LossReason, Opportunity, OrganizationalUnit, SalesRep,
    )
    from crmsync.models.sync import SyncRun  # noqa
    SQLModel.metadata.create_all(engine)
    return engine


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
