"""Shared test fixtures."""
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from crmsync.models.crm import (  # noqa: F401
    Funnel,
    FunnelColumn,
    LossReason,
    Opportunity,
    OrganizationalUnit,
    SalesRep,
)
from crmsync.models.sync import SyncRun  # noqa: F401
from crmsync.config import Settings


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings with no pacing delays and dummy remote credentials."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        remote_base_url="https://crm.example.com/api",
        remote_api_token="token",
        remote_group_id="42",
        cron_timezone="UTC",
        page_delay_seconds=0,
        branch_delay_seconds=0,
    )


@pytest.fixture(name="remote")
def remote_fixture() -> AsyncMock:
    """RemoteClient stand-in. ensure_configured is sync, everything else async."""
    client = AsyncMock()
    client.ensure_configured = MagicMock()
    return client
