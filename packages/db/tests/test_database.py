"""Schema and constraint tests against an in-memory SQLite database.

PostgreSQL-only behavior (append-only triggers, row locks) is covered by the
API integration tests.
"""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from scholarship_db import (
    AcademicPeriod,
    Application,
    ApplicationStatus,
    Budget,
    DatabaseService,
    StatusHistoryEntry,
)
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool


@pytest_asyncio.fixture
async def service():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    service = DatabaseService(engine)
    await service.create_all()
    yield service
    await engine.dispose()


@pytest_asyncio.fixture
async def period_id(service):
    async with service.session_factory() as session:
        period = AcademicPeriod(
            name="AY 2026-2027 First Semester",
            school_year="2026-2027",
            term="first",
            starts_on=date(2026, 8, 1),
            ends_on=date(2026, 12, 20),
        )
        session.add(period)
        await session.commit()
        return period.id


def _budget(period_id, school_id="SCH-001", allocated="1000", spent="0", reserved="0"):
    return Budget(
        school_id=school_id,
        academic_period_id=period_id,
        allocated_amount=Decimal(allocated),
        spent_amount=Decimal(spent),
        reserved_amount=Decimal(reserved),
    )


async def test_health_check(service):
    assert await service.health_check() is True


async def test_status_stored_by_name(service, period_id):
    async with service.session_factory() as session:
        session.add(
            Application(
                application_number="SCH-2026-000001",
                applicant_id="ana",
                academic_period_id=period_id,
                requested_amount=Decimal("5000"),
            )
        )
        await session.commit()
        raw = (await session.execute(text("SELECT status FROM applications"))).scalar_one()
        assert raw == "DRAFT"

        application = (await session.execute(text("SELECT history_seq, review_cycle FROM applications"))).one()
        assert tuple(application) == (0, 0)


async def test_budget_cannot_be_overcommitted(service, period_id):
    async with service.session_factory() as session:
        session.add(_budget(period_id, allocated="1000", spent="600", reserved="500"))
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_budget_amounts_cannot_be_negative(service, period_id):
    async with service.session_factory() as session:
        session.add(_budget(period_id, reserved="-1"))
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_one_budget_per_school_and_period(service, period_id):
    async with service.session_factory() as session:
        session.add_all([_budget(period_id), _budget(period_id)])
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_one_foundation_pool_per_period(service, period_id):
    async with service.session_factory() as session:
        session.add(_budget(period_id, school_id=None))
        await session.commit()
        session.add(_budget(period_id, school_id=None))
        with pytest.raises(IntegrityError):
            await session.commit()


async def test_history_sequence_unique_per_application(service, period_id):
    async with service.session_factory() as session:
        application = Application(
            application_number="SCH-2026-000002",
            applicant_id="ana",
            academic_period_id=period_id,
            requested_amount=Decimal("5000"),
        )
        session.add(application)
        await session.flush()
        for _ in range(2):
            session.add(
                StatusHistoryEntry(
                    application_id=application.id,
                    sequence=1,
                    operation="submit",
                    previous_status=ApplicationStatus.DRAFT,
                    status=ApplicationStatus.SUBMITTED,
                    actor_id="ana",
                )
            )
        with pytest.raises(IntegrityError):
            await session.commit()
