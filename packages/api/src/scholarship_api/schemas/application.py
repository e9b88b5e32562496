"""Application request/response schemas."""

from datetime import date, datetime, time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from scholarship_db.enums import (
    ApplicationStatus,
    DisbursementMethod,
    InterviewResult,
    InterviewType,
)

from ..domain.workflow import allowed_operations
from . import Pagination


class ApplicationCreate(BaseModel):
    """Create a new draft scholarship application."""

    academic_period_id: int
    requested_amount: Decimal = Field(gt=0)
    school_id: str | None = None
    applicant_id: str | None = Field(
        default=None,
        description="Staff only: file on behalf of this applicant.",
    )
    notes: str | None = None


class ApplicationResponse(BaseModel):
    """Single application response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    application_number: str
    applicant_id: str
    school_id: str | None = None
    academic_period_id: int
    budget_id: int | None = None
    disbursement_id: int | None = None
    status: ApplicationStatus
    requested_amount: Decimal
    approved_amount: Decimal | None = None
    rejection_reason: str | None = None
    compliance_reason: str | None = None
    notes: str | None = None
    stage_status: dict = {}
    review_cycle: int = 0
    enrollment_details: dict | None = None
    interview_details: dict | None = None
    interview_result: InterviewResult | None = None
    history_seq: int = 0
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    fund_reserved_at: datetime | None = None
    processed_at: datetime | None = None
    released_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def allowed_operations(self) -> list[str]:
        return [op.value for op in allowed_operations(self.status)]


class ApplicationListResponse(BaseModel):
    """Paginated list of applications."""

    data: list[ApplicationResponse]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Transition payloads
# ---------------------------------------------------------------------------


class TransitionRequest(BaseModel):
    """Base payload: optional notes plus the optimistic status check."""

    expected_status: ApplicationStatus | None = Field(
        default=None,
        description="Reject the operation with 409 if the application is no longer in this status.",
    )
    notes: str | None = None


class ComplianceRequest(TransitionRequest):
    reason: str = Field(min_length=1, max_length=1000)


class EnrollmentVerificationRequest(TransitionRequest):
    enrollment_proof_document_id: int
    enrollment_year: str = Field(min_length=1)
    enrollment_term: str = Field(min_length=1)
    is_currently_enrolled: bool


class InterviewScheduleRequest(TransitionRequest):
    interview_date: date
    interview_time: time
    interview_type: InterviewType
    interviewer_name: str = Field(min_length=1)
    location: str | None = None
    meeting_link: str | None = None
    duration: int | None = Field(default=None, gt=0, le=480)


class AutoInterviewScheduleRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    interviewer_name: str = Field(min_length=1)
    interview_type: InterviewType = InterviewType.IN_PERSON
    location: str | None = None
    meeting_link: str | None = None


class InterviewCompletionRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    interview_result: InterviewResult
    interview_notes: str = Field(min_length=1)


class ApprovalRequest(TransitionRequest):
    approved_amount: Decimal = Field(ge=0)


class RejectionRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    rejection_reason: str = Field(min_length=1)


class WithdrawRequest(BaseModel):
    expected_status: ApplicationStatus | None = None
    reason: str | None = None


class ProcessRequest(TransitionRequest):
    disbursement_method: DisbursementMethod
    reference_number: str | None = None


class ReleaseRequest(TransitionRequest):
    reference_number: str | None = None


# ---------------------------------------------------------------------------
# Transition results and history
# ---------------------------------------------------------------------------


class WarningItem(BaseModel):
    """A best-effort follow-up that failed after the operation committed."""

    kind: str = "DownstreamSideEffectFailure"
    side_effect: str
    message: str
    context: dict = {}


class StatusHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    operation: str
    previous_status: ApplicationStatus | None = None
    status: ApplicationStatus
    actor_id: str
    notes: str | None = None
    changed_at: datetime


class TransitionResponse(BaseModel):
    """Application after a committed operation, with any side-effect warnings."""

    data: ApplicationResponse
    history_entry: StatusHistoryItem | None = None
    warnings: list[WarningItem] = []


class StatusHistoryResponse(BaseModel):
    application_id: int
    count: int
    history: list[StatusHistoryItem]


class TimelineItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: ApplicationStatus
    entered_at: datetime
    left_at: datetime | None = None
    seconds: float


class TimelineResponse(BaseModel):
    application_id: int
    current_status: ApplicationStatus
    segments: list[TimelineItem]


class ReplayResponse(BaseModel):
    """Status fields rebuilt from the history log next to the stored ones."""

    model_config = ConfigDict(from_attributes=True)

    application_id: int
    status: ApplicationStatus
    history_seq: int
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    processed_at: datetime | None = None
    released_at: datetime | None = None
    matches_stored: bool
