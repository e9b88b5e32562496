"""Application routes: creation, reads and lifecycle operations.

Each lifecycle operation is its own POST endpoint. The body may carry
``expected_status``; a mismatch answers 409 with kind ``StaleStateError``.
"""

from fastapi import APIRouter, Depends, Query, status
from scholarship_db import get_db
from scholarship_db.enums import ApplicationStatus, UserRole
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_state_machine
from ..middleware.auth import CurrentUser, require_roles
from ..schemas import Pagination
from ..schemas.application import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationResponse,
    ApprovalRequest,
    AutoInterviewScheduleRequest,
    ComplianceRequest,
    EnrollmentVerificationRequest,
    InterviewCompletionRequest,
    InterviewScheduleRequest,
    ProcessRequest,
    RejectionRequest,
    ReleaseRequest,
    ReplayResponse,
    StatusHistoryItem,
    StatusHistoryResponse,
    TimelineItem,
    TimelineResponse,
    TransitionRequest,
    TransitionResponse,
    WarningItem,
    WithdrawRequest,
)
from ..services import application as app_service
from ..services.state_machine import ApplicationStateMachine, TransitionResult

router = APIRouter()

_ALL_ROLES = tuple(UserRole)
_OFFICERS = (UserRole.ADMIN, UserRole.SCHOLARSHIP_OFFICER)
_APPLICANT_OR_OFFICER = (UserRole.ADMIN, UserRole.SCHOLARSHIP_OFFICER, UserRole.APPLICANT)
_FINANCE = (UserRole.ADMIN, UserRole.FINANCE_OFFICER)


def build_warnings(warnings) -> list[WarningItem]:
    return [WarningItem(**w.as_dict()) for w in warnings]


def build_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        data=ApplicationResponse.model_validate(result.application),
        history_entry=(
            StatusHistoryItem.model_validate(result.history_entry)
            if result.history_entry is not None
            else None
        ),
        warnings=build_warnings(result.warnings),
    )


# ---------------------------------------------------------------------------
# Reads and creation
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*_APPLICANT_OR_OFFICER))],
)
async def create_application(
    body: ApplicationCreate,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Create a draft application for the current applicant."""
    application = await app_service.create_application(
        session,
        user,
        academic_period_id=body.academic_period_id,
        requested_amount=body.requested_amount,
        school_id=body.school_id,
        applicant_id=body.applicant_id,
        notes=body.notes,
    )
    return ApplicationResponse.model_validate(application)


@router.get(
    "/",
    response_model=ApplicationListResponse,
    dependencies=[Depends(require_roles(*_ALL_ROLES))],
)
async def list_applications(
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    filter_status: ApplicationStatus | None = None,
    academic_period_id: int | None = None,
    school_id: str | None = None,
    sort_by: str | None = Query(default=None, pattern="^(updated_at|created_at|requested_amount)$"),
) -> ApplicationListResponse:
    """List applications visible to the current user's role and data scope."""
    applications, total = await app_service.list_applications(
        session,
        user,
        offset=offset,
        limit=limit,
        filter_status=filter_status,
        academic_period_id=academic_period_id,
        school_id=school_id,
        sort_by=sort_by,
    )
    return ApplicationListResponse(
        data=[ApplicationResponse.model_validate(app) for app in applications],
        pagination=Pagination(
            total=total,
            offset=offset,
            limit=limit,
            has_more=(offset + limit < total),
        ),
    )


@router.get(
    "/{application_id}",
    response_model=ApplicationResponse,
    dependencies=[Depends(require_roles(*_ALL_ROLES))],
)
async def get_application(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Get a single application. Returns 404 for out-of-scope resources."""
    application = await app_service.get_application(session, user, application_id)
    return ApplicationResponse.model_validate(application)


@router.get(
    "/{application_id}/history",
    response_model=StatusHistoryResponse,
    dependencies=[Depends(require_roles(*_ALL_ROLES))],
)
async def get_history(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> StatusHistoryResponse:
    history = await app_service.get_history(session, user, application_id)
    return StatusHistoryResponse(
        application_id=application_id,
        count=len(history),
        history=[StatusHistoryItem.model_validate(entry) for entry in history],
    )


@router.get(
    "/{application_id}/timeline",
    response_model=TimelineResponse,
    dependencies=[Depends(require_roles(*_ALL_ROLES))],
)
async def get_timeline(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> TimelineResponse:
    """Time spent in each status the application has passed through."""
    segments = await app_service.get_timeline(session, user, application_id)
    return TimelineResponse(
        application_id=application_id,
        current_status=segments[-1].status,
        segments=[TimelineItem.model_validate(segment) for segment in segments],
    )


@router.get(
    "/{application_id}/replay",
    response_model=ReplayResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def replay_application(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ReplayResponse:
    """Rebuild status fields from the history log and compare with the stored row."""
    application = await app_service.get_application(session, user, application_id)
    projection = await app_service.replay_projection(session, user, application_id)
    return ReplayResponse(
        application_id=application_id,
        status=projection.status,
        history_seq=projection.history_seq,
        submitted_at=projection.submitted_at,
        reviewed_at=projection.reviewed_at,
        approved_at=projection.approved_at,
        processed_at=projection.processed_at,
        released_at=projection.released_at,
        matches_stored=(
            projection.status == application.status
            and projection.history_seq == (application.history_seq or 0)
        ),
    )


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


@router.post(
    "/{application_id}/submit",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_APPLICANT_OR_OFFICER))],
)
async def submit(
    application_id: int,
    user: CurrentUser,
    body: TransitionRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    body = body or TransitionRequest()
    result = await machine.submit(
        user, application_id, expected_status=body.expected_status, notes=body.notes
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/review",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def review(
    application_id: int,
    user: CurrentUser,
    body: TransitionRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    body = body or TransitionRequest()
    result = await machine.review(
        user, application_id, expected_status=body.expected_status, notes=body.notes
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/flag-for-compliance",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def flag_for_compliance(
    application_id: int,
    body: ComplianceRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.flag_for_compliance(
        user, application_id, reason=body.reason, expected_status=body.expected_status
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/approve-for-verification",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def approve_for_verification(
    application_id: int,
    user: CurrentUser,
    body: TransitionRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    body = body or TransitionRequest()
    result = await machine.approve_for_verification(
        user, application_id, expected_status=body.expected_status, notes=body.notes
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/verify-enrollment",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def verify_enrollment(
    application_id: int,
    body: EnrollmentVerificationRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.verify_enrollment(
        user,
        application_id,
        enrollment_proof_document_id=body.enrollment_proof_document_id,
        enrollment_year=body.enrollment_year,
        enrollment_term=body.enrollment_term,
        is_currently_enrolled=body.is_currently_enrolled,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/schedule-interview",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def schedule_interview(
    application_id: int,
    body: InterviewScheduleRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.schedule_interview(
        user,
        application_id,
        interview_date=body.interview_date,
        interview_time=body.interview_time,
        interview_type=body.interview_type,
        interviewer_name=body.interviewer_name,
        location=body.location,
        meeting_link=body.meeting_link,
        duration=body.duration,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/schedule-interview/auto",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def schedule_interview_automatically(
    application_id: int,
    body: AutoInterviewScheduleRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.schedule_interview_automatically(
        user,
        application_id,
        interviewer_name=body.interviewer_name,
        interview_type=body.interview_type,
        location=body.location,
        meeting_link=body.meeting_link,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/complete-interview",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def complete_interview(
    application_id: int,
    body: InterviewCompletionRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.complete_interview(
        user,
        application_id,
        interview_result=body.interview_result,
        interview_notes=body.interview_notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/endorse-to-ssc",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def endorse_to_ssc(
    application_id: int,
    user: CurrentUser,
    body: TransitionRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    body = body or TransitionRequest()
    result = await machine.endorse_to_ssc(
        user, application_id, expected_status=body.expected_status, notes=body.notes
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/approve",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def approve(
    application_id: int,
    body: ApprovalRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    """Direct award outside the committee stages. Reserves the approved amount."""
    result = await machine.approve(
        user,
        application_id,
        approved_amount=body.approved_amount,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/reject",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_OFFICERS))],
)
async def reject(
    application_id: int,
    body: RejectionRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.reject(
        user,
        application_id,
        rejection_reason=body.rejection_reason,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/withdraw",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_APPLICANT_OR_OFFICER))],
)
async def withdraw(
    application_id: int,
    user: CurrentUser,
    body: WithdrawRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    body = body or WithdrawRequest()
    result = await machine.withdraw(
        user, application_id, reason=body.reason, expected_status=body.expected_status
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/process",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_FINANCE))],
)
async def process(
    application_id: int,
    body: ProcessRequest,
    user: CurrentUser,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.process(
        user,
        application_id,
        method=body.disbursement_method,
        reference_number=body.reference_number,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)


@router.post(
    "/{application_id}/release",
    response_model=TransitionResponse,
    dependencies=[Depends(require_roles(*_FINANCE))],
)
async def release(
    application_id: int,
    user: CurrentUser,
    body: ReleaseRequest | None = None,
    machine: ApplicationStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    """Release the pending disbursement; the reservation becomes spend."""
    body = body or ReleaseRequest()
    result = await machine.release(
        user,
        application_id,
        reference_number=body.reference_number,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return build_transition_response(result)
