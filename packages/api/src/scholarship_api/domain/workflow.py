"""Application lifecycle rules: the closed operation -> transition table.

Pure functions only. The state machine service owns locking, persistence
and side effects; everything here can be exercised without a database.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from scholarship_db.enums import ApplicationStatus, ReviewStage

from ..core.errors import InvalidStateTransition

S = ApplicationStatus


class Operation(str, enum.Enum):
    SUBMIT = "submit"
    REVIEW = "review"
    FLAG_FOR_COMPLIANCE = "flag_for_compliance"
    APPROVE_FOR_VERIFICATION = "approve_for_verification"
    VERIFY_ENROLLMENT = "verify_enrollment"
    SCHEDULE_INTERVIEW = "schedule_interview"
    SCHEDULE_INTERVIEW_AUTOMATICALLY = "schedule_interview_automatically"
    COMPLETE_INTERVIEW = "complete_interview"
    ENDORSE_TO_SSC = "endorse_to_ssc"
    COMPLETE_SSC_STAGES = "complete_ssc_stages"
    REQUEST_REVISION = "request_revision"
    SSC_FINAL_APPROVAL = "ssc_final_approval"
    SSC_FINAL_REJECTION = "ssc_final_rejection"
    APPROVE = "approve"
    REJECT = "reject"
    WITHDRAW = "withdraw"
    PROCESS = "process"
    RELEASE = "release"


@dataclass(frozen=True)
class Transition:
    sources: frozenset[ApplicationStatus]
    targets: frozenset[ApplicationStatus]


_NON_TERMINAL = frozenset(set(S) - S.terminal_statuses())

TRANSITIONS: dict[Operation, Transition] = {
    Operation.SUBMIT: Transition(frozenset({S.DRAFT}), frozenset({S.SUBMITTED})),
    Operation.REVIEW: Transition(
        frozenset({S.SUBMITTED, S.FOR_COMPLIANCE}), frozenset({S.DOCUMENTS_REVIEWED})
    ),
    Operation.FLAG_FOR_COMPLIANCE: Transition(
        frozenset({S.SUBMITTED, S.DOCUMENTS_REVIEWED}), frozenset({S.FOR_COMPLIANCE})
    ),
    Operation.APPROVE_FOR_VERIFICATION: Transition(
        frozenset({S.DOCUMENTS_REVIEWED}), frozenset({S.APPROVED_PENDING_VERIFICATION})
    ),
    Operation.VERIFY_ENROLLMENT: Transition(
        frozenset({S.APPROVED_PENDING_VERIFICATION}), frozenset({S.ENROLLMENT_VERIFIED})
    ),
    Operation.SCHEDULE_INTERVIEW: Transition(
        frozenset({S.ENROLLMENT_VERIFIED}), frozenset({S.INTERVIEW_SCHEDULED})
    ),
    Operation.SCHEDULE_INTERVIEW_AUTOMATICALLY: Transition(
        frozenset({S.ENROLLMENT_VERIFIED}), frozenset({S.INTERVIEW_SCHEDULED})
    ),
    Operation.COMPLETE_INTERVIEW: Transition(
        frozenset({S.INTERVIEW_SCHEDULED}), frozenset({S.INTERVIEW_COMPLETED})
    ),
    Operation.ENDORSE_TO_SSC: Transition(
        frozenset({S.INTERVIEW_COMPLETED}), frozenset({S.ENDORSED_TO_SSC})
    ),
    Operation.COMPLETE_SSC_STAGES: Transition(
        S.ssc_review_statuses(), frozenset({S.SSC_FINAL_APPROVAL})
    ),
    Operation.REQUEST_REVISION: Transition(
        S.ssc_review_statuses(),
        frozenset({S.FOR_COMPLIANCE, S.SSC_DOCUMENT_VERIFICATION, S.SSC_FINANCIAL_REVIEW}),
    ),
    Operation.SSC_FINAL_APPROVAL: Transition(
        frozenset({S.SSC_FINAL_APPROVAL}), frozenset({S.APPROVED})
    ),
    Operation.SSC_FINAL_REJECTION: Transition(
        frozenset({S.SSC_FINAL_APPROVAL}), frozenset({S.REJECTED})
    ),
    # Direct award by an administrator, outside the committee stages.
    Operation.APPROVE: Transition(frozenset({S.ENDORSED_TO_SSC}), frozenset({S.APPROVED})),
    Operation.REJECT: Transition(_NON_TERMINAL, frozenset({S.REJECTED})),
    Operation.WITHDRAW: Transition(S.under_review_statuses(), frozenset({S.WITHDRAWN})),
    Operation.PROCESS: Transition(frozenset({S.APPROVED}), frozenset({S.PROCESSING})),
    Operation.RELEASE: Transition(frozenset({S.PROCESSING}), frozenset({S.DISBURSED})),
}

# Where a revision request on each committee stage sends the application.
REVISION_TARGETS: dict[ReviewStage, ApplicationStatus] = {
    ReviewStage.DOCUMENT_VERIFICATION: S.FOR_COMPLIANCE,
    ReviewStage.FINANCIAL_REVIEW: S.SSC_DOCUMENT_VERIFICATION,
    ReviewStage.ACADEMIC_REVIEW: S.SSC_FINANCIAL_REVIEW,
}

# Operations that reserve funds for the approved amount.
RESERVING_OPERATIONS = frozenset({Operation.APPROVE, Operation.SSC_FINAL_APPROVAL})
# Operations that release an outstanding reservation.
RELEASING_OPERATIONS = frozenset(
    {Operation.REJECT, Operation.SSC_FINAL_REJECTION, Operation.WITHDRAW}
)


@dataclass(frozen=True)
class StatusChange:
    operation: Operation
    from_status: ApplicationStatus
    to_status: ApplicationStatus


def resolve_transition(
    current: ApplicationStatus,
    operation: Operation,
    target: ApplicationStatus | None = None,
) -> StatusChange:
    """Return the status change ``operation`` causes from ``current``.

    ``target`` picks the destination for operations with more than one
    (revision requests). Raises InvalidStateTransition when the operation is
    not allowed from ``current`` or the target is not one of its destinations.
    """
    current = ApplicationStatus(current)
    rule = TRANSITIONS[operation]
    if current not in rule.sources:
        raise InvalidStateTransition(operation.value, current.value)

    if target is None:
        if len(rule.targets) != 1:
            raise InvalidStateTransition(
                operation.value,
                current.value,
                f"{operation.value} needs an explicit destination",
            )
        (to_status,) = rule.targets
    else:
        to_status = ApplicationStatus(target)
        if to_status not in rule.targets:
            raise InvalidStateTransition(
                operation.value,
                current.value,
                f"{operation.value} cannot move an application to '{to_status.value}'",
            )
    return StatusChange(operation=operation, from_status=current, to_status=to_status)


def allowed_operations(current: ApplicationStatus) -> list[Operation]:
    """Operations legal from ``current``, in table order."""
    return [op for op, rule in TRANSITIONS.items() if current in rule.sources]


def valid_transitions() -> dict[ApplicationStatus, frozenset[ApplicationStatus]]:
    """Status graph derived from the operation table."""
    graph: dict[ApplicationStatus, set[ApplicationStatus]] = {status: set() for status in S}
    for rule in TRANSITIONS.values():
        for source in rule.sources:
            graph[source] |= rule.targets
    return {status: frozenset(targets) for status, targets in graph.items()}


# ---------------------------------------------------------------------------
# History replay
# ---------------------------------------------------------------------------

_TIMESTAMP_FIELDS = {
    Operation.SUBMIT: "submitted_at",
    Operation.REVIEW: "reviewed_at",
    Operation.APPROVE: "approved_at",
    Operation.SSC_FINAL_APPROVAL: "approved_at",
    Operation.PROCESS: "processed_at",
    Operation.RELEASE: "released_at",
}


@dataclass(frozen=True)
class ApplicationProjection:
    """Status-related fields of an application rebuilt from its history log."""

    status: ApplicationStatus = S.DRAFT
    history_seq: int = 0
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    processed_at: datetime | None = None
    released_at: datetime | None = None
    last_changed_at: datetime | None = None


def apply_history_entry(projection: ApplicationProjection, entry) -> ApplicationProjection:
    """Fold one history row (sequence, operation, previous_status, status, changed_at)."""
    operation = Operation(entry.operation)
    if entry.sequence != projection.history_seq + 1:
        raise InvalidStateTransition(
            operation.value,
            projection.status.value,
            f"History gap: expected sequence {projection.history_seq + 1}, got {entry.sequence}",
        )
    if entry.previous_status is not None and ApplicationStatus(entry.previous_status) != projection.status:
        raise InvalidStateTransition(
            operation.value,
            projection.status.value,
            f"History row {entry.sequence} starts from '{entry.previous_status}'",
        )
    change = resolve_transition(projection.status, operation, ApplicationStatus(entry.status))
    updates = {
        "status": change.to_status,
        "history_seq": entry.sequence,
        "last_changed_at": entry.changed_at,
    }
    timestamp_field = _TIMESTAMP_FIELDS.get(operation)
    if timestamp_field is not None:
        updates[timestamp_field] = entry.changed_at
    return replace(projection, **updates)


def replay_status_history(entries: Iterable) -> ApplicationProjection:
    """Rebuild the projection by folding history rows in sequence order.

    Deterministic: replaying the same log any number of times yields an
    equal projection.
    """
    projection = ApplicationProjection()
    for entry in sorted(entries, key=lambda e: e.sequence):
        projection = apply_history_entry(projection, entry)
    return projection
