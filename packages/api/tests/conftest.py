"""Shared fixtures: a fresh in-memory SQLite database per test.

The schema is built from the ORM metadata. SQLite ignores ``FOR UPDATE``,
so row-lock behavior is covered by the PostgreSQL integration tests.
"""

import pytest
import pytest_asyncio
from scholarship_db import Base
from scholarship_db.database import build_session_factory
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from scholarship_api.services.stage_review import StageReviewEngine
from scholarship_api.services.state_machine import ApplicationStateMachine

from .factories import RecordingNotifier, RecordingRegistry, make_budget, make_period


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def period(session):
    return await make_period(session)


@pytest_asyncio.fixture
async def budget(session, period):
    """School SCH-001 budget with 10,000.00 allocated."""
    return await make_budget(session, period)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def registry():
    return RecordingRegistry()


@pytest.fixture
def machine(session, notifier):
    return ApplicationStateMachine(session, notifier=notifier)


@pytest.fixture
def stage_engine(session, machine, registry):
    return StageReviewEngine(session, state_machine=machine, registry=registry)
