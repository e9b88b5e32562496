"""
Scholarship aid -- domain models

Applications and their append-only status history, committee stage reviews
and decisions, budget pools with their append-only ledger, disbursements,
and the audit trail.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)

from .database import Base
from .enums import (
    ApplicationStatus,
    BudgetStatus,
    DisbursementMethod,
    DisbursementStatus,
    InterviewResult,
    ReferenceType,
    ReviewStage,
    SscDecisionType,
    StageOutcome,
    TransactionType,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


class AcademicPeriod(Base):
    """A school year/term that applications and budgets are scoped to."""

    __tablename__ = "academic_periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    school_year = Column(String(9), nullable=False)
    term = Column(String(20), nullable=False)
    starts_on = Column(Date, nullable=False)
    ends_on = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<AcademicPeriod(id={self.id}, name='{self.name}')>"


class ApplicationNumberSequence(Base):
    """Per-year counter backing human-readable application numbers."""

    __tablename__ = "application_number_sequences"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)


class Application(Base):
    """Scholarship application. Status is only changed by named transitions."""

    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_number = Column(String(32), nullable=False, unique=True, index=True)
    applicant_id = Column(String(255), nullable=False, index=True)
    school_id = Column(String(64), nullable=True, index=True)
    academic_period_id = Column(Integer, ForeignKey("academic_periods.id"), nullable=False, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=True, index=True)
    disbursement_id = Column(Integer, nullable=True)
    status = Column(
        Enum(ApplicationStatus, name="application_status", native_enum=False),
        nullable=False,
        default=ApplicationStatus.DRAFT,
        index=True,
    )
    requested_amount = Column(Numeric(12, 2), nullable=False)
    approved_amount = Column(Numeric(12, 2), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    compliance_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    # stage name -> {status, reviewer, reviewer_role, notes, data, timestamp}
    stage_status = Column(JSON, nullable=False, default=dict)
    review_cycle = Column(Integer, nullable=False, default=0)
    enrollment_details = Column(JSON, nullable=True)
    interview_details = Column(JSON, nullable=True)
    interview_result = Column(
        Enum(InterviewResult, name="interview_result", native_enum=False),
        nullable=True,
    )
    history_seq = Column(Integer, nullable=False, default=0)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(255), nullable=True)
    fund_reserved_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    released_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return (
            f"<Application(id={self.id}, number='{self.application_number}', "
            f"status='{self.status}')>"
        )


class StatusHistoryEntry(Base):
    """Append-only: one row per committed transition, ordered by sequence."""

    __tablename__ = "application_status_history"
    __table_args__ = (
        UniqueConstraint("application_id", "sequence", name="uq_status_history_app_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    operation = Column(String(50), nullable=False)
    previous_status = Column(
        Enum(ApplicationStatus, name="application_status", native_enum=False),
        nullable=True,
    )
    status = Column(
        Enum(ApplicationStatus, name="application_status", native_enum=False),
        nullable=False,
    )
    actor_id = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    changed_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<StatusHistoryEntry(app={self.application_id}, seq={self.sequence}, "
            f"status='{self.status}')>"
        )


class StageReview(Base):
    """One reviewer's verdict on one committee stage. Latest per cycle wins."""

    __tablename__ = "stage_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    stage = Column(Enum(ReviewStage, name="review_stage", native_enum=False), nullable=False)
    reviewer_id = Column(String(255), nullable=False)
    reviewer_role = Column(String(50), nullable=False)
    outcome = Column(Enum(StageOutcome, name="stage_outcome", native_enum=False), nullable=False)
    notes = Column(Text, nullable=True)
    review_data = Column(JSON, nullable=True)
    cycle = Column(Integer, nullable=False, default=1)
    reviewed_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<StageReview(app={self.application_id}, stage='{self.stage}', "
            f"outcome='{self.outcome}')>"
        )


class SscDecision(Base):
    """Chairperson's final committee decision with a snapshot of the stage reviews."""

    __tablename__ = "ssc_decisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    decision = Column(Enum(SscDecisionType, name="ssc_decision_type", native_enum=False), nullable=False)
    approved_amount = Column(Numeric(12, 2), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    cycle = Column(Integer, nullable=False)
    all_reviews_data = Column(JSON, nullable=False, default=list)
    decided_by = Column(String(255), nullable=False)
    decided_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SscDecision(id={self.id}, app={self.application_id}, decision='{self.decision}')>"


class Budget(Base):
    """Finite money pool for one school (or the foundation pool) and period."""

    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("school_id", "academic_period_id", name="uq_budget_school_period"),
        # NULLs never collide in the constraint above; one foundation pool per period.
        Index(
            "uq_budget_foundation_period",
            "academic_period_id",
            unique=True,
            postgresql_where=text("school_id IS NULL"),
            sqlite_where=text("school_id IS NULL"),
        ),
        CheckConstraint("spent_amount >= 0", name="ck_budget_spent_non_negative"),
        CheckConstraint("reserved_amount >= 0", name="ck_budget_reserved_non_negative"),
        CheckConstraint(
            "allocated_amount >= spent_amount + reserved_amount",
            name="ck_budget_not_overcommitted",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    # NULL school_id is the foundation-wide pool used for public schools.
    school_id = Column(String(64), nullable=True, index=True)
    academic_period_id = Column(Integer, ForeignKey("academic_periods.id"), nullable=False, index=True)
    allocated_amount = Column(Numeric(12, 2), nullable=False, default=0)
    spent_amount = Column(Numeric(12, 2), nullable=False, default=0)
    reserved_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(
        Enum(BudgetStatus, name="budget_status", native_enum=False),
        nullable=False,
        default=BudgetStatus.ACTIVE,
    )
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    @property
    def available_amount(self):
        return self.allocated_amount - self.spent_amount - self.reserved_amount

    def __repr__(self):
        return f"<Budget(id={self.id}, school='{self.school_id}', available={self.available_amount})>"


class BudgetTransaction(Base):
    """Append-only ledger row. balance_before/after are available balances."""

    __tablename__ = "budget_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=False, index=True)
    transaction_type = Column(
        Enum(TransactionType, name="transaction_type", native_enum=False),
        nullable=False,
    )
    # Positive for reservation/release/disbursement; signed for adjustment.
    amount = Column(Numeric(12, 2), nullable=False)
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    reference_type = Column(
        Enum(ReferenceType, name="reference_type", native_enum=False),
        nullable=False,
    )
    reference_id = Column(Integer, nullable=True)
    application_id = Column(Integer, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    performed_by = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<BudgetTransaction(id={self.id}, budget={self.budget_id}, "
            f"type='{self.transaction_type}', amount={self.amount})>"
        )


class Disbursement(Base):
    """Physical payment of an approved award."""

    __tablename__ = "disbursements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    disbursement_method = Column(
        Enum(DisbursementMethod, name="disbursement_method", native_enum=False),
        nullable=False,
    )
    reference_number = Column(String(100), nullable=True)
    disbursement_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(DisbursementStatus, name="disbursement_status", native_enum=False),
        nullable=False,
        default=DisbursementStatus.PENDING,
    )
    processed_by = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Disbursement(id={self.id}, app={self.application_id}, status='{self.status}')>"


class AuditEvent(Base):
    """Append-only audit trail. INSERT + SELECT only -- no UPDATE or DELETE."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    prev_hash = Column(String(64), nullable=True)
    user_id = Column(String(255), nullable=True)
    user_role = Column(String(50), nullable=True)
    event_type = Column(String(100), nullable=False, index=True)
    application_id = Column(Integer, nullable=True, index=True)
    budget_id = Column(Integer, nullable=True, index=True)
    event_data = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<AuditEvent(id={self.id}, type='{self.event_type}')>"
