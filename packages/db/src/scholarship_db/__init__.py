__version__ = "0.1.0"

from .database import Base, DatabaseService, get_db, get_db_service
from .enums import (
    ApplicationStatus,
    BudgetStatus,
    DisbursementMethod,
    DisbursementStatus,
    InterviewResult,
    InterviewType,
    ReferenceType,
    ReviewStage,
    SscDecisionType,
    SscRole,
    StageOutcome,
    TransactionType,
    UserRole,
)
from .models import (
    AcademicPeriod,
    Application,
    ApplicationNumberSequence,
    AuditEvent,
    Budget,
    BudgetTransaction,
    Disbursement,
    SscDecision,
    StageReview,
    StatusHistoryEntry,
)

__all__ = [
    "Base",
    "DatabaseService",
    "get_db",
    "get_db_service",
    "__version__",
    # Enums
    "ApplicationStatus",
    "BudgetStatus",
    "DisbursementMethod",
    "DisbursementStatus",
    "InterviewResult",
    "InterviewType",
    "ReferenceType",
    "ReviewStage",
    "SscDecisionType",
    "SscRole",
    "StageOutcome",
    "TransactionType",
    "UserRole",
    # Models
    "AcademicPeriod",
    "Application",
    "ApplicationNumberSequence",
    "AuditEvent",
    "Budget",
    "BudgetTransaction",
    "Disbursement",
    "SscDecision",
    "StageReview",
    "StatusHistoryEntry",
]
