"""Scholarship Selection Committee routes.

Stage endpoints are open to committee members and administrators at the
route level; which stage a member may act on is decided by the
StageReviewEngine's authorizer from the caller's committee roles.
"""

from fastapi import APIRouter, Depends, Query
from scholarship_db.enums import ReviewStage, UserRole

from ..core.config import settings
from ..dependencies import get_stage_engine
from ..middleware.auth import CurrentUser, require_roles
from ..schemas.application import ApplicationResponse, StatusHistoryItem
from ..schemas.ssc import (
    FinalApprovalRequest,
    FinalRejectionRequest,
    ParkedItem,
    ParkedResponse,
    RevisionRequest,
    SscDecisionItem,
    StageActionRequest,
    StageActionResponse,
    StageQueueResponse,
    StageReviewItem,
    StageReviewListResponse,
)
from ..services.stage_review import StageReviewEngine, StageReviewResult
from .applications import build_warnings

router = APIRouter()

_COMMITTEE = (UserRole.ADMIN, UserRole.SSC_MEMBER)
_COMMITTEE_READERS = (UserRole.ADMIN, UserRole.SSC_MEMBER, UserRole.SCHOLARSHIP_OFFICER)


def _build_response(result: StageReviewResult) -> StageActionResponse:
    return StageActionResponse(
        data=ApplicationResponse.model_validate(result.application),
        review=StageReviewItem.model_validate(result.review) if result.review is not None else None,
        decision=(
            SscDecisionItem.model_validate(result.decision) if result.decision is not None else None
        ),
        history_entry=(
            StatusHistoryItem.model_validate(result.history_entry)
            if result.history_entry is not None
            else None
        ),
        warnings=build_warnings(result.warnings),
    )


@router.post(
    "/applications/{application_id}/stages/{stage}/approve",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def approve_stage(
    application_id: int,
    stage: ReviewStage,
    user: CurrentUser,
    body: StageActionRequest | None = None,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    """Approve one stage. The last pending approval advances to final approval."""
    body = body or StageActionRequest()
    result = await engine.approve_stage(
        user,
        application_id,
        stage,
        notes=body.notes,
        stage_data=body.stage_data,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.post(
    "/applications/{application_id}/stages/{stage}/reject",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def reject_stage(
    application_id: int,
    stage: ReviewStage,
    body: StageActionRequest,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    """Reject one stage. The application stays in committee review."""
    result = await engine.reject_stage(
        user,
        application_id,
        stage,
        notes=body.notes,
        stage_data=body.stage_data,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.post(
    "/applications/{application_id}/stages/{stage}/request-revision",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def request_stage_revision(
    application_id: int,
    stage: ReviewStage,
    body: StageActionRequest,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    result = await engine.request_stage_revision(
        user,
        application_id,
        stage,
        notes=body.notes,
        stage_data=body.stage_data,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.post(
    "/applications/{application_id}/revision",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def request_revision(
    application_id: int,
    body: RevisionRequest,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    """Route the application back for rework on the given stage."""
    result = await engine.request_revision(
        user,
        application_id,
        body.stage,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.post(
    "/applications/{application_id}/final-approval",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def final_approval(
    application_id: int,
    body: FinalApprovalRequest,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    result = await engine.final_approval(
        user,
        application_id,
        approved_amount=body.approved_amount,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.post(
    "/applications/{application_id}/final-rejection",
    response_model=StageActionResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def final_rejection(
    application_id: int,
    body: FinalRejectionRequest,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageActionResponse:
    result = await engine.final_rejection(
        user,
        application_id,
        rejection_reason=body.rejection_reason,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return _build_response(result)


@router.get(
    "/applications/{application_id}/reviews",
    response_model=StageReviewListResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE_READERS))],
)
async def review_history(
    application_id: int,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageReviewListResponse:
    reviews = await engine.review_history(user, application_id)
    return StageReviewListResponse(
        application_id=application_id,
        count=len(reviews),
        reviews=[StageReviewItem.model_validate(r) for r in reviews],
    )


@router.get(
    "/queue/{stage}",
    response_model=StageQueueResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE))],
)
async def stage_queue(
    stage: ReviewStage,
    user: CurrentUser,
    engine: StageReviewEngine = Depends(get_stage_engine),
) -> StageQueueResponse:
    """Applications waiting on ``stage`` that the caller may review."""
    applications = await engine.stage_queue(user, stage)
    return StageQueueResponse(
        stage=stage,
        count=len(applications),
        data=[ApplicationResponse.model_validate(app) for app in applications],
    )


@router.get(
    "/parked",
    response_model=ParkedResponse,
    dependencies=[Depends(require_roles(*_COMMITTEE_READERS))],
)
async def parked_applications(
    engine: StageReviewEngine = Depends(get_stage_engine),
    older_than_days: int | None = Query(default=None, ge=0),
) -> ParkedResponse:
    """Applications with a stage left rejected past the parking threshold."""
    days = settings.PARKED_STAGE_DAYS if older_than_days is None else older_than_days
    parked = await engine.parked_applications(older_than_days=days)
    return ParkedResponse(
        older_than_days=days,
        count=len(parked),
        data=[
            ParkedItem(
                application_id=item.application.id,
                application_number=item.application.application_number,
                status=item.application.status,
                stage=item.stage,
                rejected_at=item.rejected_at,
                days_parked=item.days_parked,
            )
            for item in parked
        ],
    )
