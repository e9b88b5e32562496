"""Typed error hierarchy for the scholarship workflow and budget ledger.

Every error carries a machine-readable ``code``, the taxonomy ``kind`` the
UI uses to explain "why not", the HTTP status it maps to, and a
``context`` dict (current status, attempted operation, amounts...).
``main.py`` renders them as RFC 7807 problem details.

    ScholarshipError
    +-- InvalidStateTransition      409
    +-- StaleStateError             409
    +-- InsufficientFunds           409
    +-- ReservationMismatch         409
    +-- ValidationError             422
    +-- NotFoundError               404
    |   +-- ApplicationNotFound
    |   +-- BudgetNotFound
    +-- Unauthorized                401
    +-- Forbidden                   403

``DownstreamSideEffectFailure`` is not an exception: best-effort follow-ups
never fail the primary operation, they are reported as warnings.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


class ScholarshipError(Exception):
    """Base class for every domain error surfaced to callers."""

    code: str = "SCHOLARSHIP_ERROR"
    kind: str = "ScholarshipError"
    status_code: int = 400

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)


class InvalidStateTransition(ScholarshipError):
    """The operation is not legal from the entity's current status."""

    code = "INVALID_STATE_TRANSITION"
    kind = "InvalidStateTransition"
    status_code = 409

    def __init__(self, operation: str, current_status: str, message: str | None = None):
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            message or f"Cannot {operation} an application in status '{current_status}'",
            operation=operation,
            current_status=current_status,
        )


class StaleStateError(ScholarshipError):
    """The caller's expected status no longer matches the stored one."""

    code = "STALE_STATE"
    kind = "StaleStateError"
    status_code = 409

    def __init__(self, operation: str, expected_status: str, current_status: str):
        self.operation = operation
        self.expected_status = expected_status
        self.current_status = current_status
        super().__init__(
            f"Application was expected in '{expected_status}' but is '{current_status}'; "
            "refetch before retrying",
            operation=operation,
            expected_status=expected_status,
            current_status=current_status,
        )


class InsufficientFunds(ScholarshipError):
    """A reservation (or downward adjustment) would overdraw the budget."""

    code = "INSUFFICIENT_FUNDS"
    kind = "InsufficientFunds"
    status_code = 409

    def __init__(self, requested: Decimal, available: Decimal, budget_id: int | None = None):
        self.requested = requested
        self.available = available
        self.budget_id = budget_id
        super().__init__(
            f"Requested {requested} but only {available} is available",
            budget_id=budget_id,
            requested=str(requested),
            available=str(available),
        )


class ReservationMismatch(ScholarshipError):
    """Release or disbursement exceeds what is reserved for the reference."""

    code = "RESERVATION_MISMATCH"
    kind = "ReservationMismatch"
    status_code = 409

    def __init__(self, requested: Decimal, reserved: Decimal, budget_id: int | None = None):
        self.requested = requested
        self.reserved = reserved
        self.budget_id = budget_id
        super().__init__(
            f"Cannot move {requested}; only {reserved} is reserved",
            budget_id=budget_id,
            requested=str(requested),
            reserved=str(reserved),
        )


class ValidationError(ScholarshipError):
    """Payload failed an operation-specific check."""

    code = "VALIDATION_ERROR"
    kind = "ValidationError"
    status_code = 422

    def __init__(self, field_name: str, message: str):
        self.errors = [{"field": field_name, "message": message}]
        super().__init__(f"{field_name}: {message}", errors=self.errors)


class NotFoundError(ScholarshipError):
    code = "NOT_FOUND"
    kind = "NotFound"
    status_code = 404


class ApplicationNotFound(NotFoundError):
    code = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: int):
        self.application_id = application_id
        super().__init__("Application not found", application_id=application_id)


class BudgetNotFound(NotFoundError):
    code = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: int):
        self.budget_id = budget_id
        super().__init__("Budget not found", budget_id=budget_id)


class Unauthorized(ScholarshipError):
    code = "UNAUTHORIZED"
    kind = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Mutations require an authenticated actor"):
        super().__init__(message)


class Forbidden(ScholarshipError):
    code = "FORBIDDEN"
    kind = "Forbidden"
    status_code = 403


@dataclass(frozen=True)
class DownstreamSideEffectFailure:
    """Warning record for a best-effort follow-up that failed after commit."""

    side_effect: str
    message: str
    context: dict = field(default_factory=dict)

    kind = "DownstreamSideEffectFailure"

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "side_effect": self.side_effect,
            "message": self.message,
            "context": self.context,
        }
