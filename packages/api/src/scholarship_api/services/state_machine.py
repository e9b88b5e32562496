"""Application status state machine.

Every lifecycle change goes through ``ApplicationStateMachine``. One
operation is one unit of work:

1. lock the application row (``SELECT ... FOR UPDATE``),
2. compare the caller's ``expected_status`` (optimistic check),
3. resolve the transition against the static table,
4. apply the operation payload and the money side effects (reserve,
   release, disburse) through the budget ledger,
5. set the new status and timestamps, append one StatusHistoryEntry with the
   next per-application sequence number, and record one audit event,
6. commit.

Anything that fails before the commit rolls the whole operation back.
Applicant notifications are sent after the commit; a failing gateway
produces a ``DownstreamSideEffectFailure`` warning, never an error.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

from scholarship_db import Application, Disbursement, StatusHistoryEntry
from scholarship_db.enums import (
    ApplicationStatus,
    DisbursementMethod,
    DisbursementStatus,
    InterviewResult,
    InterviewType,
)
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import (
    ApplicationNotFound,
    DownstreamSideEffectFailure,
    InvalidStateTransition,
    StaleStateError,
    Unauthorized,
    ValidationError,
)
from ..domain.balance import ZERO, to_money
from ..domain.references import ApplicationRef, DisbursementRef
from ..domain.scheduling import first_free_slot
from ..domain.stages import pending_stage_status
from ..domain.workflow import (
    RELEASING_OPERATIONS,
    RESERVING_OPERATIONS,
    Operation,
    StatusChange,
    resolve_transition,
)
from ..schemas.auth import UserContext
from . import ledger
from .audit import AuditTrail, DatabaseAuditTrail
from .notifications import NotificationGateway, StatusChangedEvent, get_notification_gateway
from .scope import apply_data_scope
from .unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

Prepare = Callable[[Application], Awaitable[None]]

# Advisory lock held while an automatic booking reads and claims a slot.
INTERVIEW_SLOT_LOCK_KEY = 900_002


@dataclass
class TransitionResult:
    """Outcome of one committed operation."""

    application: Application
    history_entry: StatusHistoryEntry | None
    events: list[StatusChangedEvent] = field(default_factory=list)
    warnings: list[DownstreamSideEffectFailure] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(UTC)


def require_actor(user: UserContext | None) -> UserContext:
    """Mutations must be attributable to an actor."""
    if user is None or not user.user_id:
        raise Unauthorized()
    return user


class ApplicationStateMachine:
    def __init__(
        self,
        session: AsyncSession,
        *,
        audit: AuditTrail | None = None,
        notifier: NotificationGateway | None = None,
    ):
        self.session = session
        self.audit = audit or DatabaseAuditTrail()
        self.notifier = notifier or get_notification_gateway()

    # ------------------------------------------------------------------
    # Building blocks (shared with the stage review engine)
    # ------------------------------------------------------------------

    async def lock_application(self, user: UserContext, application_id: int) -> Application:
        """Load and row-lock an application visible to ``user``."""
        stmt = (
            select(Application)
            .where(Application.id == application_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        stmt = apply_data_scope(stmt, user.data_scope)
        application = (await self.session.execute(stmt)).scalar_one_or_none()
        if application is None:
            raise ApplicationNotFound(application_id)
        return application

    @staticmethod
    def check_expected_status(
        application: Application,
        operation: Operation | str,
        expected_status: ApplicationStatus | None,
    ) -> None:
        if expected_status is None:
            return
        expected = ApplicationStatus(expected_status)
        operation = getattr(operation, "value", operation)
        if application.status != expected:
            logger.warning(
                "Stale %s on application %s: expected %s, found %s",
                operation,
                application.id,
                expected.value,
                application.status.value,
            )
            raise StaleStateError(operation, expected.value, application.status.value)

    async def apply_transition(
        self,
        application: Application,
        operation: Operation,
        user: UserContext,
        *,
        target: ApplicationStatus | None = None,
        notes: str | None = None,
        prepare: Prepare | None = None,
    ) -> tuple[StatusHistoryEntry, StatusChangedEvent]:
        """Apply one transition to a locked application without committing."""
        change = resolve_transition(application.status, operation, target)
        if prepare is not None:
            await prepare(application)
        ledger_txn_ids = await self._money_side_effects(application, change, user)

        now = _now()
        application.status = change.to_status
        self._stamp(application, operation, user, now)
        application.history_seq = (application.history_seq or 0) + 1

        entry = StatusHistoryEntry(
            application_id=application.id,
            sequence=application.history_seq,
            operation=operation.value,
            previous_status=change.from_status,
            status=change.to_status,
            actor_id=user.user_id,
            notes=notes,
            changed_at=now,
        )
        self.session.add(entry)
        await self.session.flush()

        await self.audit.record(
            self.session,
            event_type="status_transition",
            user_id=user.user_id,
            user_role=user.role.value,
            application_id=application.id,
            budget_id=application.budget_id,
            event_data={
                "operation": operation.value,
                "from_status": change.from_status.value,
                "to_status": change.to_status.value,
                "sequence": entry.sequence,
                "notes": notes,
                "approved_amount": (
                    str(application.approved_amount)
                    if application.approved_amount is not None
                    else None
                ),
                "ledger_transactions": ledger_txn_ids,
            },
        )
        logger.info(
            "Application %s: %s %s -> %s by %s",
            application.application_number,
            operation.value,
            change.from_status.value,
            change.to_status.value,
            user.user_id,
        )
        event = StatusChangedEvent(
            application_id=application.id,
            application_number=application.application_number,
            applicant_id=application.applicant_id,
            operation=operation.value,
            from_status=change.from_status.value,
            to_status=change.to_status.value,
            actor_id=user.user_id,
            sequence=entry.sequence,
            occurred_at=now,
            notes=notes,
        )
        return entry, event

    async def dispatch(self, events: list[StatusChangedEvent]) -> list[DownstreamSideEffectFailure]:
        """Send notifications for committed events; failures become warnings."""
        warnings = []
        for event in events:
            try:
                await self.notifier.notify(event)
            except Exception as exc:
                logger.warning(
                    "Notification for application %s (%s) failed: %s",
                    event.application_number,
                    event.to_status,
                    exc,
                )
                warnings.append(
                    DownstreamSideEffectFailure(
                        side_effect="notification",
                        message=str(exc),
                        context={"application_id": event.application_id, "to_status": event.to_status},
                    )
                )
        return warnings

    async def _run(
        self,
        user: UserContext,
        application_id: int,
        operation: Operation,
        *,
        expected_status: ApplicationStatus | None = None,
        target: ApplicationStatus | None = None,
        notes: str | None = None,
        prepare: Prepare | None = None,
    ) -> TransitionResult:
        require_actor(user)
        async with unit_of_work(self.session):
            application = await self.lock_application(user, application_id)
            self.check_expected_status(application, operation, expected_status)
            entry, event = await self.apply_transition(
                application, operation, user, target=target, notes=notes, prepare=prepare
            )
        warnings = await self.dispatch([event])
        return TransitionResult(application, entry, [event], warnings)

    @staticmethod
    def _stamp(application: Application, operation: Operation, user: UserContext, now: datetime) -> None:
        if operation == Operation.SUBMIT:
            application.submitted_at = now
        elif operation == Operation.REVIEW:
            application.reviewed_at = now
            application.reviewed_by = user.user_id
        elif operation in RESERVING_OPERATIONS:
            application.approved_at = now
            application.approved_by = user.user_id
        elif operation == Operation.PROCESS:
            application.processed_at = now
        elif operation == Operation.RELEASE:
            application.released_at = now
            application.released_by = user.user_id

    # ------------------------------------------------------------------
    # Money side effects
    # ------------------------------------------------------------------

    async def _money_side_effects(
        self, application: Application, change: StatusChange, user: UserContext
    ) -> list[int]:
        if change.operation in RESERVING_OPERATIONS:
            return await self._reserve(application, user)
        if change.operation in RELEASING_OPERATIONS:
            return await self._release(application, change, user)
        return []

    async def _reserve(self, application: Application, user: UserContext) -> list[int]:
        amount = to_money(application.approved_amount or ZERO)
        if amount <= ZERO:
            return []
        budget = await ledger.resolve_budget_for(self.session, application)
        if budget is None:
            logger.info(
                "No budget covers application %s; approving without a reservation",
                application.application_number,
            )
            return []
        txn = await ledger.reserve_funds(
            self.session, budget.id, amount, ApplicationRef(application.id), user
        )
        application.budget_id = budget.id
        application.fund_reserved_at = _now()
        return [txn.id]

    async def _release(
        self, application: Application, change: StatusChange, user: UserContext
    ) -> list[int]:
        if change.from_status == ApplicationStatus.PROCESSING:
            disbursement = await self._pending_disbursement(application)
            if disbursement is not None:
                disbursement.status = DisbursementStatus.FAILED
                disbursement.notes = f"Cancelled by {change.operation.value}"

        if application.budget_id is None:
            return []
        outstanding = await ledger.outstanding_reservation(
            self.session, application.budget_id, application.id
        )
        if outstanding <= ZERO:
            return []
        txn = await ledger.release_funds(
            self.session,
            application.budget_id,
            outstanding,
            ApplicationRef(application.id),
            user,
            notes=f"Released on {change.operation.value}",
        )
        return [txn.id]

    async def _pending_disbursement(self, application: Application) -> Disbursement | None:
        if application.disbursement_id is None:
            return None
        disbursement = await self.session.get(Disbursement, application.disbursement_id)
        if disbursement is None or disbursement.status != DisbursementStatus.PENDING:
            return None
        return disbursement

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        user: UserContext,
        application_id: int,
        *,
        expected_status: ApplicationStatus | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        return await self._run(
            user, application_id, Operation.SUBMIT, expected_status=expected_status, notes=notes
        )

    async def review(
        self,
        user: UserContext,
        application_id: int,
        *,
        expected_status: ApplicationStatus | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Mark documents reviewed; also clears an application out of compliance."""
        return await self._run(
            user, application_id, Operation.REVIEW, expected_status=expected_status, notes=notes
        )

    async def flag_for_compliance(
        self,
        user: UserContext,
        application_id: int,
        *,
        reason: str,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        if not reason or not reason.strip():
            raise ValidationError("reason", "is required")

        async def prepare(application: Application) -> None:
            application.compliance_reason = reason

        return await self._run(
            user,
            application_id,
            Operation.FLAG_FOR_COMPLIANCE,
            expected_status=expected_status,
            notes=reason,
            prepare=prepare,
        )

    async def approve_for_verification(
        self,
        user: UserContext,
        application_id: int,
        *,
        expected_status: ApplicationStatus | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        return await self._run(
            user,
            application_id,
            Operation.APPROVE_FOR_VERIFICATION,
            expected_status=expected_status,
            notes=notes,
        )

    async def verify_enrollment(
        self,
        user: UserContext,
        application_id: int,
        *,
        enrollment_proof_document_id: int,
        enrollment_year: str,
        enrollment_term: str,
        is_currently_enrolled: bool,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        if not is_currently_enrolled:
            raise ValidationError("is_currently_enrolled", "student must be currently enrolled")

        async def prepare(application: Application) -> None:
            application.enrollment_details = {
                "enrollment_proof_document_id": enrollment_proof_document_id,
                "enrollment_year": enrollment_year,
                "enrollment_term": enrollment_term,
                "is_currently_enrolled": is_currently_enrolled,
                "verified_by": user.user_id,
                "verified_at": _now().isoformat(),
            }

        return await self._run(
            user,
            application_id,
            Operation.VERIFY_ENROLLMENT,
            expected_status=expected_status,
            notes=notes,
            prepare=prepare,
        )

    async def schedule_interview(
        self,
        user: UserContext,
        application_id: int,
        *,
        interview_date: date,
        interview_time: time,
        interview_type: InterviewType,
        interviewer_name: str,
        location: str | None = None,
        meeting_link: str | None = None,
        duration: int | None = None,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Schedule the interview at a time chosen by staff."""
        if interview_date < _now().date():
            raise ValidationError("interview_date", "must not be in the past")
        _check_venue(interview_type, location, meeting_link)

        async def prepare(application: Application) -> None:
            application.interview_details = _interview_details(
                user,
                interview_date=interview_date,
                interview_time=interview_time,
                interview_type=interview_type,
                interviewer_name=interviewer_name,
                location=location,
                meeting_link=meeting_link,
                duration=duration or settings.DEFAULT_INTERVIEW_DURATION_MINUTES,
                notes=notes,
                scheduling_type="manual",
            )
            application.interview_result = None

        return await self._run(
            user,
            application_id,
            Operation.SCHEDULE_INTERVIEW,
            expected_status=expected_status,
            notes=notes,
            prepare=prepare,
        )

    async def schedule_interview_automatically(
        self,
        user: UserContext,
        application_id: int,
        *,
        interviewer_name: str,
        interview_type: InterviewType = InterviewType.IN_PERSON,
        location: str | None = None,
        meeting_link: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Book the first free slot from the next day within the configured window."""
        _check_venue(interview_type, location, meeting_link)
        duration = settings.DEFAULT_INTERVIEW_DURATION_MINUTES

        async def prepare(application: Application) -> None:
            slot = first_free_slot(
                await self._booked_interview_slots(),
                start_day=_now().date() + timedelta(days=1),
                start_hour=settings.INTERVIEW_SLOT_START_HOUR,
                end_hour=settings.INTERVIEW_SLOT_END_HOUR,
                duration_minutes=duration,
                daily_capacity=settings.INTERVIEW_DAILY_CAPACITY,
                search_days=settings.INTERVIEW_SEARCH_DAYS,
            )
            if slot is None:
                raise ValidationError("interview_date", "no free interview slot in the search window")
            interview_date, interview_time = slot
            application.interview_details = _interview_details(
                user,
                interview_date=interview_date,
                interview_time=interview_time,
                interview_type=interview_type,
                interviewer_name=interviewer_name,
                location=location,
                meeting_link=meeting_link,
                duration=duration,
                notes=None,
                scheduling_type="automatic",
            )
            application.interview_result = None

        return await self._run(
            user,
            application_id,
            Operation.SCHEDULE_INTERVIEW_AUTOMATICALLY,
            expected_status=expected_status,
            notes="Interview scheduled automatically",
            prepare=prepare,
        )

    async def _booked_interview_slots(self) -> list[tuple[date, time]]:
        # Released at commit, after this booking is visible to the next reader.
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(text(f"SELECT pg_advisory_xact_lock({INTERVIEW_SLOT_LOCK_KEY})"))
        stmt = select(Application.interview_details).where(
            Application.status == ApplicationStatus.INTERVIEW_SCHEDULED,
            Application.interview_details.is_not(None),
        )
        booked = []
        for details in (await self.session.execute(stmt)).scalars():
            if not details:
                continue
            booked.append(
                (
                    date.fromisoformat(details["interview_date"]),
                    time.fromisoformat(details["interview_time"]),
                )
            )
        return booked

    async def complete_interview(
        self,
        user: UserContext,
        application_id: int,
        *,
        interview_result: InterviewResult,
        interview_notes: str,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        async def prepare(application: Application) -> None:
            details = dict(application.interview_details or {})
            details.update(
                {
                    "result": InterviewResult(interview_result).value,
                    "interview_notes": interview_notes,
                    "completed_by": user.user_id,
                    "completed_at": _now().isoformat(),
                }
            )
            application.interview_details = details
            application.interview_result = InterviewResult(interview_result)

        return await self._run(
            user,
            application_id,
            Operation.COMPLETE_INTERVIEW,
            expected_status=expected_status,
            notes=interview_notes,
            prepare=prepare,
        )

    async def endorse_to_ssc(
        self,
        user: UserContext,
        application_id: int,
        *,
        expected_status: ApplicationStatus | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Hand a passed interview to the committee and open a new review cycle."""

        async def prepare(application: Application) -> None:
            if application.interview_result != InterviewResult.PASSED:
                result = application.interview_result.value if application.interview_result else "none"
                raise InvalidStateTransition(
                    Operation.ENDORSE_TO_SSC.value,
                    application.status.value,
                    f"Only passed interviews can be endorsed (interview result: {result})",
                )
            application.stage_status = pending_stage_status()
            application.review_cycle = (application.review_cycle or 0) + 1

        return await self._run(
            user,
            application_id,
            Operation.ENDORSE_TO_SSC,
            expected_status=expected_status,
            notes=notes,
            prepare=prepare,
        )

    async def approve(
        self,
        user: UserContext,
        application_id: int,
        *,
        approved_amount: Decimal,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Direct award from endorsed_to_ssc; reserves the approved amount."""
        return await self._run(
            user,
            application_id,
            Operation.APPROVE,
            expected_status=expected_status,
            notes=notes,
            prepare=approved_amount_setter(approved_amount),
        )

    async def reject(
        self,
        user: UserContext,
        application_id: int,
        *,
        rejection_reason: str,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Reject from any non-terminal status, releasing any reservation."""
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("rejection_reason", "is required")

        async def prepare(application: Application) -> None:
            application.rejection_reason = rejection_reason

        return await self._run(
            user,
            application_id,
            Operation.REJECT,
            expected_status=expected_status,
            notes=rejection_reason,
            prepare=prepare,
        )

    async def withdraw(
        self,
        user: UserContext,
        application_id: int,
        *,
        reason: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        return await self._run(
            user,
            application_id,
            Operation.WITHDRAW,
            expected_status=expected_status,
            notes=reason,
        )

    async def process(
        self,
        user: UserContext,
        application_id: int,
        *,
        method: DisbursementMethod,
        reference_number: str | None = None,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Open a pending disbursement for the approved amount."""

        async def prepare(application: Application) -> None:
            disbursement = Disbursement(
                application_id=application.id,
                budget_id=application.budget_id,
                amount=to_money(application.approved_amount or ZERO),
                disbursement_method=DisbursementMethod(method),
                reference_number=reference_number,
                status=DisbursementStatus.PENDING,
                processed_by=user.user_id,
                notes=notes,
            )
            self.session.add(disbursement)
            await self.session.flush()
            application.disbursement_id = disbursement.id

        return await self._run(
            user,
            application_id,
            Operation.PROCESS,
            expected_status=expected_status,
            notes=notes,
            prepare=prepare,
        )

    async def release(
        self,
        user: UserContext,
        application_id: int,
        *,
        reference_number: str | None = None,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> TransitionResult:
        """Complete the disbursement: the reservation turns into spend."""

        async def prepare(application: Application) -> None:
            disbursement = await self._pending_disbursement(application)
            if disbursement is None:
                raise InvalidStateTransition(
                    Operation.RELEASE.value,
                    application.status.value,
                    "No pending disbursement to release",
                )
            disbursement.status = DisbursementStatus.COMPLETED
            disbursement.disbursement_date = _now()
            if reference_number:
                disbursement.reference_number = reference_number

            amount = to_money(disbursement.amount)
            if application.budget_id is not None and amount > ZERO:
                await ledger.record_disbursement(
                    self.session,
                    application.budget_id,
                    amount,
                    DisbursementRef(disbursement.id, application.id),
                    user,
                )

        return await self._run(
            user,
            application_id,
            Operation.RELEASE,
            expected_status=expected_status,
            notes=notes,
            prepare=prepare,
        )


def approved_amount_setter(approved_amount: Decimal) -> Prepare:
    """Prepare step shared by the direct and committee approvals."""
    amount = to_money(approved_amount)
    if amount < ZERO:
        raise ValidationError("approved_amount", "must not be negative")

    async def prepare(application: Application) -> None:
        if amount > to_money(application.requested_amount):
            raise ValidationError(
                "approved_amount",
                f"must not exceed the requested amount ({application.requested_amount})",
            )
        application.approved_amount = amount

    return prepare


def _check_venue(interview_type: InterviewType, location: str | None, meeting_link: str | None) -> None:
    interview_type = InterviewType(interview_type)
    if interview_type == InterviewType.IN_PERSON and not location:
        raise ValidationError("location", "is required for in-person interviews")
    if interview_type == InterviewType.ONLINE and not meeting_link:
        raise ValidationError("meeting_link", "is required for online interviews")


def _interview_details(user: UserContext, **details) -> dict:
    details["interview_date"] = details["interview_date"].isoformat()
    details["interview_time"] = details["interview_time"].strftime("%H:%M")
    details["interview_type"] = InterviewType(details["interview_type"]).value
    details["scheduled_by"] = user.user_id
    details["scheduled_at"] = _now().isoformat()
    return details
