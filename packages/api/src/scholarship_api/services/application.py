"""Application service with role-based data scope filtering.

Every query is filtered through the caller's DataScope so applicants see
only their own applications and staff see the whole pipeline. Status
changes are not made here; they go through ``ApplicationStateMachine``.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from scholarship_db import AcademicPeriod, Application, ApplicationNumberSequence, StatusHistoryEntry
from scholarship_db.enums import ApplicationStatus, UserRole
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import ApplicationNotFound, ValidationError
from ..domain.balance import ZERO, to_money
from ..domain.workflow import ApplicationProjection, replay_status_history
from ..schemas.auth import UserContext
from .audit import AuditTrail, DatabaseAuditTrail
from .scope import apply_data_scope
from .state_machine import require_actor
from .unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "updated_at": Application.updated_at.desc(),
    "created_at": Application.created_at.desc(),
    "requested_amount": Application.requested_amount.desc(),
}


def format_application_number(year: int, value: int) -> str:
    return f"{settings.APPLICATION_NUMBER_PREFIX}-{year}-{value:06d}"


async def _ensure_counter(session: AsyncSession, year: int) -> None:
    # Concurrent first-of-year callers race to create the row; losers no-op.
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql_insert
    elif dialect == "sqlite":
        insert = sqlite_insert
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")
    await session.execute(
        insert(ApplicationNumberSequence)
        .values(year=year, last_value=0)
        .on_conflict_do_nothing(index_elements=["year"])
    )


async def next_application_number(session: AsyncSession, year: int) -> str:
    """Allocate the next number for ``year`` under a row lock on its counter."""
    await _ensure_counter(session, year)
    stmt = (
        select(ApplicationNumberSequence)
        .where(ApplicationNumberSequence.year == year)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    counter = (await session.execute(stmt)).scalar_one()
    counter.last_value += 1
    await session.flush()
    return format_application_number(year, counter.last_value)


async def create_application(
    session: AsyncSession,
    user: UserContext,
    *,
    academic_period_id: int,
    requested_amount: Decimal,
    school_id: str | None = None,
    applicant_id: str | None = None,
    notes: str | None = None,
    audit: AuditTrail | None = None,
) -> Application:
    """Create a draft application.

    Applicants always create for themselves; staff may file on behalf of
    an applicant by passing ``applicant_id``.
    """
    require_actor(user)
    amount = to_money(requested_amount)
    if amount <= ZERO:
        raise ValidationError("requested_amount", "must be greater than zero")
    if user.role == UserRole.APPLICANT or applicant_id is None:
        applicant_id = user.user_id

    audit = audit or DatabaseAuditTrail()
    async with unit_of_work(session):
        period = await session.get(AcademicPeriod, academic_period_id)
        if period is None:
            raise ValidationError("academic_period_id", f"academic period {academic_period_id} does not exist")

        application = Application(
            application_number=await next_application_number(session, datetime.now(UTC).year),
            applicant_id=applicant_id,
            school_id=school_id,
            academic_period_id=academic_period_id,
            status=ApplicationStatus.DRAFT,
            requested_amount=amount,
            notes=notes,
            stage_status={},
            review_cycle=0,
            history_seq=0,
        )
        session.add(application)
        await session.flush()
        await audit.record(
            session,
            event_type="application_created",
            user_id=user.user_id,
            user_role=user.role.value,
            application_id=application.id,
            event_data={
                "application_number": application.application_number,
                "applicant_id": applicant_id,
                "requested_amount": str(amount),
            },
        )

    logger.info("Created application %s for %s", application.application_number, applicant_id)
    return application


async def list_applications(
    session: AsyncSession,
    user: UserContext,
    *,
    offset: int = 0,
    limit: int = 20,
    filter_status: ApplicationStatus | None = None,
    academic_period_id: int | None = None,
    school_id: str | None = None,
    sort_by: str | None = None,
) -> tuple[list[Application], int]:
    """Return applications visible to the current user and the total count."""
    count_stmt = select(func.count(Application.id))
    count_stmt = apply_data_scope(count_stmt, user.data_scope)
    count_stmt = _apply_filters(count_stmt, filter_status, academic_period_id, school_id)
    total = (await session.execute(count_stmt)).scalar() or 0

    order = _SORT_COLUMNS.get(sort_by, Application.updated_at.desc())
    stmt = select(Application).order_by(order, Application.id.desc()).offset(offset).limit(limit)
    stmt = apply_data_scope(stmt, user.data_scope)
    stmt = _apply_filters(stmt, filter_status, academic_period_id, school_id)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


def _apply_filters(stmt, filter_status, academic_period_id, school_id):
    if filter_status is not None:
        stmt = stmt.where(Application.status == filter_status)
    if academic_period_id is not None:
        stmt = stmt.where(Application.academic_period_id == academic_period_id)
    if school_id is not None:
        stmt = stmt.where(Application.school_id == school_id)
    return stmt


async def get_application(session: AsyncSession, user: UserContext, application_id: int) -> Application:
    """Return a single application visible to the current user.

    Out-of-scope applications raise ApplicationNotFound rather than
    Forbidden, to avoid leaking their existence.
    """
    stmt = apply_data_scope(select(Application).where(Application.id == application_id), user.data_scope)
    application = (await session.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound(application_id)
    return application


async def get_history(session: AsyncSession, user: UserContext, application_id: int) -> list[StatusHistoryEntry]:
    """Status history in sequence order."""
    application = await get_application(session, user, application_id)
    stmt = (
        select(StatusHistoryEntry)
        .where(StatusHistoryEntry.application_id == application.id)
        .order_by(StatusHistoryEntry.sequence)
    )
    return list((await session.execute(stmt)).scalars().all())


@dataclass(frozen=True)
class TimelineSegment:
    status: ApplicationStatus
    entered_at: datetime
    left_at: datetime | None
    seconds: float


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def build_timeline(
    application: Application, history: list[StatusHistoryEntry], now: datetime | None = None
) -> list[TimelineSegment]:
    """Time spent in each status, from creation through the current one."""
    now = now or datetime.now(UTC)
    segments = []
    status = ApplicationStatus.DRAFT
    entered = _aware(application.created_at)
    for entry in history:
        left = _aware(entry.changed_at)
        segments.append(TimelineSegment(status, entered, left, (left - entered).total_seconds()))
        status, entered = ApplicationStatus(entry.status), left
    segments.append(TimelineSegment(status, entered, None, max((now - entered).total_seconds(), 0.0)))
    return segments


async def get_timeline(session: AsyncSession, user: UserContext, application_id: int) -> list[TimelineSegment]:
    application = await get_application(session, user, application_id)
    history = await get_history(session, user, application_id)
    return build_timeline(application, history)


async def replay_projection(session: AsyncSession, user: UserContext, application_id: int) -> ApplicationProjection:
    """Rebuild the status fields of an application from its history log."""
    history = await get_history(session, user, application_id)
    return replay_status_history(history)
