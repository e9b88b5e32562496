"""All-or-nothing transaction scope for mutating service calls."""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def unit_of_work(session: AsyncSession):
    """Commit when the block finishes, roll back and re-raise on any error."""
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
