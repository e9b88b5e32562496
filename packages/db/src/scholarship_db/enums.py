"""
Domain enums for the scholarship aid lifecycle.

Shared domain types used by both SQLAlchemy models (scholarship_db package)
and Pydantic schemas (scholarship_api package).
"""

import enum


class ApplicationStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    DOCUMENTS_REVIEWED = "documents_reviewed"
    FOR_COMPLIANCE = "for_compliance"
    APPROVED_PENDING_VERIFICATION = "approved_pending_verification"
    ENROLLMENT_VERIFIED = "enrollment_verified"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    ENDORSED_TO_SSC = "endorsed_to_ssc"
    SSC_DOCUMENT_VERIFICATION = "ssc_document_verification"
    SSC_FINANCIAL_REVIEW = "ssc_financial_review"
    SSC_ACADEMIC_REVIEW = "ssc_academic_review"
    SSC_FINAL_APPROVAL = "ssc_final_approval"
    APPROVED = "approved"
    PROCESSING = "processing"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    @classmethod
    def terminal_statuses(cls) -> frozenset["ApplicationStatus"]:
        """Statuses an application never leaves."""
        return frozenset({cls.REJECTED, cls.DISBURSED, cls.WITHDRAWN})

    @classmethod
    def ssc_review_statuses(cls) -> frozenset["ApplicationStatus"]:
        """The committee super-state: stage reviews are accepted here."""
        return frozenset(
            {
                cls.ENDORSED_TO_SSC,
                cls.SSC_DOCUMENT_VERIFICATION,
                cls.SSC_FINANCIAL_REVIEW,
                cls.SSC_ACADEMIC_REVIEW,
            }
        )

    @classmethod
    def under_review_statuses(cls) -> frozenset["ApplicationStatus"]:
        """Submitted but not yet past the document/compliance review."""
        return frozenset({cls.SUBMITTED, cls.DOCUMENTS_REVIEWED, cls.FOR_COMPLIANCE})


class ReviewStage(str, enum.Enum):
    DOCUMENT_VERIFICATION = "document_verification"
    FINANCIAL_REVIEW = "financial_review"
    ACADEMIC_REVIEW = "academic_review"
    FINAL_APPROVAL = "final_approval"

    @classmethod
    def parallel_stages(cls) -> tuple["ReviewStage", ...]:
        """The independent tracks that must all approve before the final decision."""
        return (cls.DOCUMENT_VERIFICATION, cls.FINANCIAL_REVIEW, cls.ACADEMIC_REVIEW)


class StageOutcome(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    APPLICANT = "applicant"
    SCHOLARSHIP_OFFICER = "scholarship_officer"
    SSC_MEMBER = "ssc_member"
    FINANCE_OFFICER = "finance_officer"


class SscRole(str, enum.Enum):
    CITY_COUNCIL = "city_council"
    BUDGET_DEPT = "budget_dept"
    EDUCATION_AFFAIRS = "education_affairs"
    CHAIRPERSON = "chairperson"

    @property
    def stage(self) -> ReviewStage:
        return _SSC_ROLE_STAGES[self]


_SSC_ROLE_STAGES = {
    SscRole.CITY_COUNCIL: ReviewStage.DOCUMENT_VERIFICATION,
    SscRole.BUDGET_DEPT: ReviewStage.FINANCIAL_REVIEW,
    SscRole.EDUCATION_AFFAIRS: ReviewStage.ACADEMIC_REVIEW,
    SscRole.CHAIRPERSON: ReviewStage.FINAL_APPROVAL,
}


class InterviewType(str, enum.Enum):
    IN_PERSON = "in_person"
    ONLINE = "online"
    PHONE = "phone"


class InterviewResult(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    NEEDS_FOLLOWUP = "needs_followup"


class BudgetStatus(str, enum.Enum):
    ACTIVE = "active"
    DEPLETED = "depleted"
    EXPIRED = "expired"


class TransactionType(str, enum.Enum):
    RESERVATION = "reservation"
    RELEASE = "release"
    DISBURSEMENT = "disbursement"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, enum.Enum):
    APPLICATION = "application"
    DISBURSEMENT = "disbursement"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class DisbursementStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DisbursementMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    E_WALLET = "e_wallet"


class SscDecisionType(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
