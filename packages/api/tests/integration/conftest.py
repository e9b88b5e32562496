"""Integration test fixtures: real PostgreSQL, migrated with alembic.

A session-scoped container provides the database; the schema comes from
the migrations, so the append-only triggers and row locks under test are
the production ones. Tests commit for real (concurrency needs it) and every
table is truncated afterwards.
"""

import os

import pytest
import pytest_asyncio
from scholarship_db.database import build_session_factory
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from testcontainers.postgres import PostgresContainer

pytestmark = pytest.mark.integration

_TABLES = (
    "audit_events, budget_transactions, disbursements, ssc_decisions, stage_reviews, "
    "application_status_history, applications, budgets, application_number_sequences, "
    "academic_periods"
)

_DB_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "..", "db")


# ---------------------------------------------------------------------------
# Session-scoped: container + migrations
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    with PostgresContainer(image="postgres:16-alpine", username="test", password="test", dbname="test") as pg:
        yield pg


@pytest.fixture(scope="session")
def db_url(pg_container):
    """Async DB URL for asyncpg."""
    host = pg_container.get_container_host_ip()
    port = pg_container.get_exposed_port(5432)
    return f"postgresql+asyncpg://test:test@{host}:{port}/test"


@pytest.fixture(scope="session", autouse=True)
def _run_migrations(db_url):
    """alembic upgrade head; env.py strips the asyncpg driver."""
    from alembic import command
    from alembic.config import Config

    os.environ["DATABASE_URL"] = db_url
    alembic_cfg = Config(os.path.join(_DB_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(_DB_DIR, "alembic"))
    command.upgrade(alembic_cfg, "head")


# ---------------------------------------------------------------------------
# Function-scoped: engine, sessions, cleanup
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def pg_engine(db_url):
    engine = create_async_engine(db_url, poolclass=NullPool)
    yield engine
    async with engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE TABLE {_TABLES} RESTART IDENTITY CASCADE"))
    await engine.dispose()


@pytest.fixture
def session_factory(pg_engine):
    """Overrides the SQLite factory so the shared fixtures run on PostgreSQL."""
    return build_session_factory(pg_engine)
