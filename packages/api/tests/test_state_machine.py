"""Tests for the application state machine against a real (SQLite) session."""

from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from scholarship_db import Application, AuditEvent, Budget, Disbursement, StatusHistoryEntry
from scholarship_db.enums import (
    ApplicationStatus,
    DisbursementMethod,
    DisbursementStatus,
    InterviewResult,
    InterviewType,
    TransactionType,
)
from sqlalchemy import func, select

from scholarship_api.core.errors import (
    ApplicationNotFound,
    InsufficientFunds,
    InvalidStateTransition,
    StaleStateError,
    Unauthorized,
    ValidationError,
)
from scholarship_api.services import ledger
from scholarship_api.services.application import replay_projection
from scholarship_api.services.state_machine import ApplicationStateMachine

from .factories import FailingNotifier, drive_to_endorsed, make_application, make_budget
from .personas import admin, applicant_ana, applicant_ben, finance_officer, officer

S = ApplicationStatus

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _reload(session, model, pk):
    return await session.get(model, pk, populate_existing=True)


async def _history(session, application_id):
    result = await session.execute(
        select(StatusHistoryEntry)
        .where(StatusHistoryEntry.application_id == application_id)
        .order_by(StatusHistoryEntry.sequence)
    )
    return list(result.scalars().all())


async def _audit_count(session, application_id):
    stmt = select(func.count(AuditEvent.id)).where(AuditEvent.application_id == application_id)
    return (await session.execute(stmt)).scalar_one()


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


async def test_full_pipeline_to_disbursed(session, period, budget, machine, notifier):
    application = await make_application(session, period)

    await drive_to_endorsed(machine, application.id)
    await machine.approve(admin(), application.id, approved_amount=Decimal("5000"))
    await machine.process(finance_officer(), application.id, method=DisbursementMethod.BANK_TRANSFER)
    result = await machine.release(finance_officer(), application.id, reference_number="BT-0091")

    assert result.application.status == S.DISBURSED
    assert result.warnings == []

    history = await _history(session, application.id)
    assert [entry.sequence for entry in history] == list(range(1, 11))
    assert [entry.status for entry in history][-4:] == [S.ENDORSED_TO_SSC, S.APPROVED, S.PROCESSING, S.DISBURSED]
    assert history[0].previous_status == S.DRAFT
    assert all(later.previous_status == earlier.status for earlier, later in zip(history, history[1:]))

    assert [event.to_status for event in notifier.events][-1] == "disbursed"
    assert len(notifier.events) == 10
    assert await _audit_count(session, application.id) == 10

    disbursement = await session.get(Disbursement, result.application.disbursement_id)
    assert disbursement.status == DisbursementStatus.COMPLETED
    assert disbursement.reference_number == "BT-0091"


async def test_release_moves_reservation_into_spend(session, period, budget, machine):
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)
    await machine.approve(admin(), application.id, approved_amount=Decimal("5000"))
    await machine.process(finance_officer(), application.id, method=DisbursementMethod.CHECK)

    assert budget.reserved_amount == Decimal("5000.00")
    assert budget.spent_amount == Decimal("0.00")
    available = budget.available_amount

    await machine.release(finance_officer(), application.id)

    assert budget.reserved_amount == Decimal("0.00")
    assert budget.spent_amount == Decimal("5000.00")
    assert budget.available_amount == available
    assert (await ledger.reconcile_budget(session, budget.id)).balanced


async def test_submit_stamps_and_records(session, period, machine, notifier):
    application = await make_application(session, period)

    result = await machine.submit(applicant_ana(), application.id, expected_status=S.DRAFT, notes="ready")

    assert result.application.status == S.SUBMITTED
    assert result.application.submitted_at is not None
    assert result.history_entry.sequence == 1
    assert result.history_entry.operation == "submit"
    assert result.history_entry.actor_id == applicant_ana().user_id
    assert notifier.events[0].from_status == "draft"


async def test_compliance_round_trip(session, period, machine):
    application = await make_application(session, period, status=S.SUBMITTED)

    await machine.flag_for_compliance(officer(), application.id, reason="Missing barangay certificate")
    result = await machine.review(officer(), application.id, expected_status=S.FOR_COMPLIANCE)

    assert result.application.status == S.DOCUMENTS_REVIEWED
    assert result.application.compliance_reason == "Missing barangay certificate"
    assert result.application.reviewed_by == officer().user_id


async def test_automatic_scheduling_books_distinct_slots(session, period, machine):
    first = await make_application(session, period, status=S.ENROLLMENT_VERIFIED)
    second = await make_application(session, period, status=S.ENROLLMENT_VERIFIED)

    await machine.schedule_interview_automatically(
        officer(), first.id, interviewer_name="Carla Dizon", location="City Hall"
    )
    await machine.schedule_interview_automatically(
        officer(), second.id, interviewer_name="Carla Dizon", location="City Hall"
    )

    a, b = first.interview_details, second.interview_details
    assert a["scheduling_type"] == "automatic"
    assert date.fromisoformat(a["interview_date"]) > date.today()
    assert (a["interview_date"], a["interview_time"]) != (b["interview_date"], b["interview_time"])


async def test_zero_award_reserves_nothing(session, period, budget, machine):
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)

    result = await machine.approve(admin(), application.id, approved_amount=Decimal("0"))

    assert result.application.status == S.APPROVED
    assert result.application.budget_id is None
    assert budget.reserved_amount == Decimal("0.00")


async def test_approval_without_budget_still_approves(session, period, machine):
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)
    result = await machine.approve(admin(), application.id, approved_amount=Decimal("1000"))
    assert result.application.status == S.APPROVED
    assert result.application.fund_reserved_at is None


async def test_replay_matches_stored_application(session, period, budget, machine):
    application = await make_application(session, period)
    await drive_to_endorsed(machine, application.id)
    await machine.approve(admin(), application.id, approved_amount=Decimal("2500"))

    projection = await replay_projection(session, admin(), application.id)

    assert projection.status == application.status
    assert projection.history_seq == application.history_seq
    assert projection.approved_at is not None


# ---------------------------------------------------------------------------
# Failures leave no trace
# ---------------------------------------------------------------------------


async def test_approval_beyond_available_rolls_back(session, period, machine):
    """An award larger than the available balance changes nothing."""
    budget = await make_budget(session, period, allocated=Decimal("3000"))
    budget_id = budget.id
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)
    app_id = application.id

    with pytest.raises(InsufficientFunds):
        await machine.approve(admin(), app_id, approved_amount=Decimal("5000"))

    application = await _reload(session, Application, app_id)
    budget = await _reload(session, Budget, budget_id)
    assert application.status == S.ENDORSED_TO_SSC
    assert application.approved_amount is None
    assert application.history_seq == 0
    assert await _history(session, app_id) == []
    assert budget.reserved_amount == Decimal("0.00")
    assert await _audit_count(session, app_id) == 0


async def test_reject_twice_appends_nothing(session, period, machine):
    application = await make_application(session, period, status=S.SUBMITTED)
    app_id = application.id
    await machine.reject(officer(), app_id, rejection_reason="Incomplete requirements")

    with pytest.raises(InvalidStateTransition) as exc_info:
        await machine.reject(officer(), app_id, rejection_reason="Again")

    assert exc_info.value.current_status == "rejected"
    assert len(await _history(session, app_id)) == 1
    application = await _reload(session, Application, app_id)
    assert application.rejection_reason == "Incomplete requirements"


async def test_stale_expected_status(session, period, machine):
    application = await make_application(session, period, status=S.SUBMITTED)
    app_id = application.id

    with pytest.raises(StaleStateError) as exc_info:
        await machine.review(officer(), app_id, expected_status=S.DRAFT)

    assert exc_info.value.context["expected_status"] == "draft"
    assert exc_info.value.context["current_status"] == "submitted"
    assert (await _reload(session, Application, app_id)).status == S.SUBMITTED


async def test_mutation_requires_actor(session, period, machine):
    application = await make_application(session, period)
    with pytest.raises(Unauthorized):
        await machine.submit(None, application.id)


async def test_applicant_cannot_touch_someone_elses_application(session, period, machine):
    application = await make_application(session, period)
    with pytest.raises(ApplicationNotFound):
        await machine.submit(applicant_ben(), application.id)


async def test_endorse_requires_passed_interview(session, period, machine):
    application = await make_application(
        session, period, status=S.INTERVIEW_COMPLETED, interview_result=InterviewResult.FAILED
    )
    with pytest.raises(InvalidStateTransition, match="passed interviews"):
        await machine.endorse_to_ssc(officer(), application.id)


async def test_award_cannot_exceed_request(session, period, budget, machine):
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)
    with pytest.raises(ValidationError):
        await machine.approve(admin(), application.id, approved_amount=Decimal("5000.01"))


async def test_withdraw_only_while_under_review(session, period, machine):
    submitted = await make_application(session, period, status=S.DOCUMENTS_REVIEWED)
    endorsed = await make_application(session, period, status=S.ENDORSED_TO_SSC)

    result = await machine.withdraw(applicant_ana(), submitted.id, reason="Accepted elsewhere")
    assert result.application.status == S.WITHDRAWN

    with pytest.raises(InvalidStateTransition):
        await machine.withdraw(applicant_ana(), endorsed.id)


@pytest.mark.parametrize(
    "kwargs,field",
    [
        ({"interview_date": date.today() - timedelta(days=1)}, "interview_date"),
        ({"interview_type": InterviewType.ONLINE, "location": None}, "meeting_link"),
        ({"location": None}, "location"),
    ],
)
async def test_schedule_interview_validation(session, period, machine, kwargs, field):
    application = await make_application(session, period, status=S.ENROLLMENT_VERIFIED)
    payload = {
        "interview_date": date.today() + timedelta(days=2),
        "interview_time": time(14, 0),
        "interview_type": InterviewType.IN_PERSON,
        "interviewer_name": "Carla Dizon",
        "location": "City Hall",
    }
    payload.update(kwargs)
    with pytest.raises(ValidationError) as exc_info:
        await machine.schedule_interview(officer(), application.id, **payload)
    assert exc_info.value.errors[0]["field"] == field


async def test_enrollment_must_be_current(session, period, machine):
    application = await make_application(session, period, status=S.APPROVED_PENDING_VERIFICATION)
    with pytest.raises(ValidationError):
        await machine.verify_enrollment(
            officer(),
            application.id,
            enrollment_proof_document_id=1,
            enrollment_year="2026-2027",
            enrollment_term="first",
            is_currently_enrolled=False,
        )


# ---------------------------------------------------------------------------
# Money side effects of rejection and withdrawal
# ---------------------------------------------------------------------------


async def test_reject_during_processing_cancels_and_releases(session, period, budget, machine):
    application = await make_application(session, period, status=S.ENDORSED_TO_SSC)
    await machine.approve(admin(), application.id, approved_amount=Decimal("4000"))
    await machine.process(finance_officer(), application.id, method=DisbursementMethod.CASH)

    result = await machine.reject(finance_officer(), application.id, rejection_reason="Scholar dropped out")

    assert result.application.status == S.REJECTED
    assert budget.reserved_amount == Decimal("0.00")
    assert budget.available_amount == Decimal("10000.00")
    disbursement = await session.get(Disbursement, application.disbursement_id)
    assert disbursement.status == DisbursementStatus.FAILED

    types = [txn.transaction_type for txn in (await ledger.list_transactions(session, budget.id))[0]]
    assert types == [TransactionType.ADJUSTMENT, TransactionType.RESERVATION, TransactionType.RELEASE]


async def test_release_without_pending_disbursement(session, period, machine):
    application = await make_application(session, period, status=S.PROCESSING)
    with pytest.raises(InvalidStateTransition, match="No pending disbursement"):
        await machine.release(finance_officer(), application.id)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


async def test_failed_notification_is_a_warning(session, period):
    machine = ApplicationStateMachine(session, notifier=FailingNotifier())
    application = await make_application(session, period)

    result = await machine.submit(applicant_ana(), application.id)

    assert result.application.status == S.SUBMITTED
    (warning,) = result.warnings
    assert warning.side_effect == "notification"
    assert warning.context["to_status"] == "submitted"
    assert (await _reload(session, Application, application.id)).status == S.SUBMITTED
