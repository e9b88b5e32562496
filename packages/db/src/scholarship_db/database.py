"""Async engine, session factory and FastAPI session dependency."""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import db_settings

Base = declarative_base()


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the API and by test fixtures.

    Objects stay usable after commit; services return ORM rows to routes
    that serialize them outside the transaction.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = create_async_engine(db_settings.DATABASE_URL, echo=db_settings.SQL_ECHO, pool_pre_ping=True)
SessionLocal = build_session_factory(engine)


class DatabaseService:
    """Thin wrapper used by health checks and scripts."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = build_session_factory(self.engine)

    async def health_check(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def create_all(self) -> None:
        """Create every table. Used for SQLite test databases; production uses alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


db_service = DatabaseService(engine=engine)


def get_db_service() -> DatabaseService:
    return db_service


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session per request."""
    async with SessionLocal() as session:
        yield session
