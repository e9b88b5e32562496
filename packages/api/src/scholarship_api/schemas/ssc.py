"""Scholarship Selection Committee request/response schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from scholarship_db.enums import ApplicationStatus, ReviewStage, SscDecisionType, StageOutcome

from .application import ApplicationResponse, StatusHistoryItem, WarningItem


class StageActionRequest(BaseModel):
    """Verdict on one committee stage."""

    expected_status: ApplicationStatus | None = None
    notes: str | None = None
    stage_data: dict | None = Field(
        default=None,
        description="Stage-specific findings, merged into earlier data for the stage.",
    )


class RevisionRequest(BaseModel):
    """Send the application back for rework on ``stage``."""

    expected_status: ApplicationStatus | None = None
    stage: ReviewStage
    notes: str = Field(min_length=1)


class FinalApprovalRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    approved_amount: Decimal = Field(ge=0)
    notes: str | None = None


class FinalRejectionRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    rejection_reason: str = Field(min_length=1)
    notes: str | None = None


class StageReviewItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage: ReviewStage
    reviewer_id: str
    reviewer_role: str
    outcome: StageOutcome
    notes: str | None = None
    review_data: dict | None = None
    cycle: int
    reviewed_at: datetime


class SscDecisionItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    decision: SscDecisionType
    approved_amount: Decimal | None = None
    rejection_reason: str | None = None
    notes: str | None = None
    cycle: int
    all_reviews_data: list = []
    decided_by: str
    decided_at: datetime


class StageActionResponse(BaseModel):
    data: ApplicationResponse
    review: StageReviewItem | None = None
    decision: SscDecisionItem | None = None
    history_entry: StatusHistoryItem | None = None
    warnings: list[WarningItem] = []


class StageReviewListResponse(BaseModel):
    application_id: int
    count: int
    reviews: list[StageReviewItem]


class StageQueueResponse(BaseModel):
    stage: ReviewStage
    count: int
    data: list[ApplicationResponse]


class ParkedItem(BaseModel):
    application_id: int
    application_number: str
    status: ApplicationStatus
    stage: ReviewStage
    rejected_at: datetime
    days_parked: int


class ParkedResponse(BaseModel):
    older_than_days: int
    count: int
    data: list[ParkedItem]
