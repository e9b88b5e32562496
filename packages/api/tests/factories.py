"""Shared builders for service and functional tests.

Rows are created through the real services where a service exists for the
purpose (budgets, lifecycle operations) so the ledger and history they
leave behind are the ones production would write.
"""

import itertools
from datetime import date, time, timedelta
from decimal import Decimal

from scholarship_db import AcademicPeriod, Application, Budget
from scholarship_db.enums import ApplicationStatus, InterviewResult, InterviewType

from scholarship_api.domain.stages import pending_stage_status
from scholarship_api.services import ledger
from scholarship_api.services.notifications import StatusChangedEvent

from .personas import ANA_USER_ID, admin

_numbers = itertools.count(1)


# ---------------------------------------------------------------------------
# Fake gateways
# ---------------------------------------------------------------------------


class RecordingNotifier:
    def __init__(self):
        self.events: list[StatusChangedEvent] = []

    async def notify(self, event: StatusChangedEvent) -> None:
        self.events.append(event)


class FailingNotifier:
    async def notify(self, event: StatusChangedEvent) -> None:
        raise ConnectionError("notification service unreachable")


class RecordingRegistry:
    def __init__(self):
        self.calls: list[dict] = []

    async def register_scholar(self, **kwargs) -> None:
        self.calls.append(kwargs)


class FailingRegistry:
    async def register_scholar(self, **kwargs) -> None:
        raise ConnectionError("student registry unreachable")


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


async def make_period(session, name: str = "AY 2026-2027 First Semester") -> AcademicPeriod:
    period = AcademicPeriod(
        name=name,
        school_year="2026-2027",
        term="first",
        starts_on=date(2026, 8, 1),
        ends_on=date(2026, 12, 20),
        is_active=True,
    )
    session.add(period)
    await session.commit()
    return period


async def make_budget(
    session,
    period: AcademicPeriod,
    *,
    school_id: str | None = "SCH-001",
    allocated: Decimal = Decimal("10000.00"),
    valid_until: date | None = None,
) -> Budget:
    budget = await ledger.allocate_budget(
        session,
        school_id=school_id,
        academic_period_id=period.id,
        amount=allocated,
        actor=admin(),
        valid_until=valid_until,
    )
    await session.commit()
    return budget


async def make_application(
    session,
    period: AcademicPeriod,
    *,
    status: ApplicationStatus = ApplicationStatus.DRAFT,
    applicant_id: str = ANA_USER_ID,
    school_id: str | None = "SCH-001",
    requested_amount: Decimal = Decimal("5000.00"),
    **fields,
) -> Application:
    """Insert an application directly in ``status``.

    Committee statuses get an open review cycle with a passed interview.
    """
    values = {
        "application_number": f"SCH-2026-{next(_numbers):06d}",
        "applicant_id": applicant_id,
        "school_id": school_id,
        "academic_period_id": period.id,
        "status": status,
        "requested_amount": requested_amount,
        "stage_status": {},
        "review_cycle": 0,
        "history_seq": 0,
    }
    if status in ApplicationStatus.ssc_review_statuses() or status == ApplicationStatus.SSC_FINAL_APPROVAL:
        values.update(
            stage_status=pending_stage_status(),
            review_cycle=1,
            interview_result=InterviewResult.PASSED,
        )
    values.update(fields)
    application = Application(**values)
    session.add(application)
    await session.commit()
    return application


# ---------------------------------------------------------------------------
# Driving the lifecycle
# ---------------------------------------------------------------------------


async def drive_to_endorsed(machine, application_id: int, *, owner=None, staff=None):
    """Walk a draft application through every step up to endorsed_to_ssc."""
    from .personas import applicant_ana, officer

    owner = owner or applicant_ana()
    staff = staff or officer()
    await machine.submit(owner, application_id)
    await machine.review(staff, application_id)
    await machine.approve_for_verification(staff, application_id)
    await machine.verify_enrollment(
        staff,
        application_id,
        enrollment_proof_document_id=77,
        enrollment_year="2026-2027",
        enrollment_term="first",
        is_currently_enrolled=True,
    )
    await machine.schedule_interview(
        staff,
        application_id,
        interview_date=date.today() + timedelta(days=3),
        interview_time=time(10, 0),
        interview_type=InterviewType.IN_PERSON,
        interviewer_name="Carla Dizon",
        location="City Hall, Room 4",
    )
    await machine.complete_interview(
        staff,
        application_id,
        interview_result=InterviewResult.PASSED,
        interview_notes="Clear goals, strong references",
    )
    return await machine.endorse_to_ssc(staff, application_id)
