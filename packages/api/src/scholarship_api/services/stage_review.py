"""Scholarship Selection Committee (SSC) stage review engine.

While an application sits in the committee super-state, three stage tracks
(document verification, financial review, academic review) are reviewed
independently and in any order. Stage verdicts never change the overall
status, with two exceptions that go through the state machine:

- the approval that completes the last pending stage moves the application
  to ``ssc_final_approval``;
- ``request_revision`` routes the application back for rework.

The chairperson's final approval or rejection is the single join point. It
snapshots every stage review of the cycle into an SscDecision and, on
approval, reserves funds and enrolls the scholar in the student registry
(best effort).
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from scholarship_db import Application, SscDecision, StageReview, StatusHistoryEntry
from scholarship_db.enums import (
    ApplicationStatus,
    ReviewStage,
    SscDecisionType,
    StageOutcome,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.errors import (
    ApplicationNotFound,
    DownstreamSideEffectFailure,
    Forbidden,
    InvalidStateTransition,
    ValidationError,
)
from ..domain.stages import (
    PARALLEL_STAGES,
    all_stages_approved,
    mark_stage,
    reset_from,
    stage_outcome,
)
from ..domain.workflow import REVISION_TARGETS, Operation
from ..schemas.auth import UserContext
from .authorizer import Authorizer, StaticRoleAuthorizer
from .notifications import StatusChangedEvent
from .registry import StudentRegistryClient, get_student_registry
from .scope import apply_data_scope
from .state_machine import ApplicationStateMachine, approved_amount_setter, require_actor
from .unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

_SSC_STATUSES = ApplicationStatus.ssc_review_statuses()


@dataclass
class StageReviewResult:
    """Outcome of one stage or final committee action."""

    application: Application
    review: StageReview | None = None
    decision: SscDecision | None = None
    history_entry: StatusHistoryEntry | None = None
    events: list[StatusChangedEvent] = field(default_factory=list)
    warnings: list[DownstreamSideEffectFailure] = field(default_factory=list)


@dataclass(frozen=True)
class ParkedApplication:
    application: Application
    stage: ReviewStage
    rejected_at: datetime
    days_parked: int


def _now() -> datetime:
    return datetime.now(UTC)


def _parallel_stage(stage: ReviewStage) -> ReviewStage:
    stage = ReviewStage(stage)
    if stage not in PARALLEL_STAGES:
        raise ValidationError(
            "stage", f"must be one of {', '.join(s.value for s in PARALLEL_STAGES)}"
        )
    return stage


def _reviewer_role(user: UserContext, stage: ReviewStage) -> str:
    for role in user.ssc_roles:
        if role.stage == stage:
            return role.value
    return user.role.value


class StageReviewEngine:
    def __init__(
        self,
        session: AsyncSession,
        *,
        state_machine: ApplicationStateMachine | None = None,
        authorizer: Authorizer | None = None,
        registry: StudentRegistryClient | None = None,
    ):
        self.session = session
        self.state_machine = state_machine or ApplicationStateMachine(session)
        self.authorizer = authorizer or StaticRoleAuthorizer()
        self.registry = registry or get_student_registry()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lock_for(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        action: str,
        expected_status: ApplicationStatus | None,
    ) -> Application:
        require_actor(user)
        application = await self.state_machine.lock_application(user, application_id)
        self.state_machine.check_expected_status(application, action, expected_status)
        if not self.authorizer.may_act(user, stage, application):
            logger.warning(
                "Stage access denied: user=%s stage=%s application=%s",
                user.user_id,
                stage.value,
                application_id,
            )
            raise Forbidden(
                f"Not authorized to act on the {stage.value} stage",
                stage=stage.value,
                operation=action,
            )
        return application

    def _record_review(
        self,
        application: Application,
        stage: ReviewStage,
        outcome: StageOutcome,
        user: UserContext,
        notes: str | None,
        data: dict | None,
    ) -> StageReview:
        review = StageReview(
            application_id=application.id,
            stage=stage,
            reviewer_id=user.user_id,
            reviewer_role=_reviewer_role(user, stage),
            outcome=outcome,
            notes=notes,
            review_data=data or {},
            cycle=application.review_cycle or 1,
            reviewed_at=_now(),
        )
        self.session.add(review)
        return review

    async def _stage_verdict(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        outcome: StageOutcome,
        *,
        notes: str | None,
        stage_data: dict | None,
        expected_status: ApplicationStatus | None,
    ) -> StageReviewResult:
        stage = _parallel_stage(stage)
        action = f"{outcome.value}_stage"
        events = []
        entry = None
        async with unit_of_work(self.session):
            application = await self._lock_for(user, application_id, stage, action, expected_status)
            if application.status not in _SSC_STATUSES:
                raise InvalidStateTransition(action, application.status.value)
            if stage_outcome(application.stage_status, stage) == StageOutcome.APPROVED:
                raise InvalidStateTransition(
                    action,
                    application.status.value,
                    f"Stage {stage.value} is already approved in this review cycle",
                )

            review = self._record_review(application, stage, outcome, user, notes, stage_data)
            application.stage_status = mark_stage(
                application.stage_status,
                stage,
                outcome,
                reviewer_id=user.user_id,
                reviewer_role=review.reviewer_role,
                notes=notes,
                data=stage_data,
                at=review.reviewed_at,
            )
            await self.session.flush()
            await self.state_machine.audit.record(
                self.session,
                event_type="stage_review",
                user_id=user.user_id,
                user_role=user.role.value,
                application_id=application.id,
                event_data={
                    "stage": stage.value,
                    "outcome": outcome.value,
                    "review_id": review.id,
                    "cycle": review.cycle,
                },
            )
            logger.info(
                "Application %s stage %s %s by %s",
                application.application_number,
                stage.value,
                outcome.value,
                user.user_id,
            )

            if outcome == StageOutcome.APPROVED and all_stages_approved(application.stage_status):
                entry, event = await self.state_machine.apply_transition(
                    application,
                    Operation.COMPLETE_SSC_STAGES,
                    user,
                    notes="All committee stages approved",
                )
                events.append(event)

        warnings = await self.state_machine.dispatch(events)
        return StageReviewResult(application, review, None, entry, events, warnings)

    async def _cycle_reviews(self, application: Application) -> list[StageReview]:
        stmt = (
            select(StageReview)
            .where(
                StageReview.application_id == application.id,
                StageReview.cycle == (application.review_cycle or 1),
            )
            .order_by(StageReview.id)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # ------------------------------------------------------------------
    # Stage operations
    # ------------------------------------------------------------------

    async def approve_stage(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        *,
        notes: str | None = None,
        stage_data: dict | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        """Approve one stage; the last approval moves the application to final approval."""
        return await self._stage_verdict(
            user,
            application_id,
            stage,
            StageOutcome.APPROVED,
            notes=notes,
            stage_data=stage_data,
            expected_status=expected_status,
        )

    async def reject_stage(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        *,
        notes: str | None = None,
        stage_data: dict | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        """Reject one stage. Overall status is unchanged; other stages continue."""
        if not notes or not notes.strip():
            raise ValidationError("notes", "a reason is required to reject a stage")
        return await self._stage_verdict(
            user,
            application_id,
            stage,
            StageOutcome.REJECTED,
            notes=notes,
            stage_data=stage_data,
            expected_status=expected_status,
        )

    async def request_stage_revision(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        *,
        notes: str,
        stage_data: dict | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        """Flag one stage for rework without moving the application."""
        if not notes or not notes.strip():
            raise ValidationError("notes", "is required")
        return await self._stage_verdict(
            user,
            application_id,
            stage,
            StageOutcome.REVISION_REQUESTED,
            notes=notes,
            stage_data=stage_data,
            expected_status=expected_status,
        )

    async def request_revision(
        self,
        user: UserContext,
        application_id: int,
        stage: ReviewStage,
        *,
        notes: str,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        """Send the application back for rework on ``stage``.

        document_verification goes back to compliance; a later stage goes
        back to the committee sub-state of the stage before it. The
        requested stage and the ones after it are reset to pending.
        """
        stage = _parallel_stage(stage)
        if not notes or not notes.strip():
            raise ValidationError("notes", "is required")
        require_actor(user)

        async with unit_of_work(self.session):
            application = await self.state_machine.lock_application(user, application_id)
            self.state_machine.check_expected_status(
                application, Operation.REQUEST_REVISION, expected_status
            )
            if not (
                self.authorizer.may_act(user, stage, application)
                or self.authorizer.may_act(user, ReviewStage.FINAL_APPROVAL, application)
            ):
                raise Forbidden(
                    f"Not authorized to request revision on the {stage.value} stage",
                    stage=stage.value,
                    operation=Operation.REQUEST_REVISION.value,
                )

            prepared: list[StageReview] = []

            async def prepare(app: Application) -> None:
                review = self._record_review(
                    app, stage, StageOutcome.REVISION_REQUESTED, user, notes, None
                )
                stage_status = reset_from(app.stage_status, stage)
                app.stage_status = mark_stage(
                    stage_status,
                    stage,
                    StageOutcome.REVISION_REQUESTED,
                    reviewer_id=user.user_id,
                    reviewer_role=review.reviewer_role,
                    notes=notes,
                    data=None,
                    at=review.reviewed_at,
                )
                prepared.append(review)

            entry, event = await self.state_machine.apply_transition(
                application,
                Operation.REQUEST_REVISION,
                user,
                target=REVISION_TARGETS[stage],
                notes=f"Revision requested: {notes}",
                prepare=prepare,
            )

        warnings = await self.state_machine.dispatch([event])
        return StageReviewResult(application, prepared[0], None, entry, [event], warnings)

    # ------------------------------------------------------------------
    # Final decision
    # ------------------------------------------------------------------

    async def _final(
        self,
        user: UserContext,
        application_id: int,
        operation: Operation,
        *,
        approved_amount: Decimal | None,
        rejection_reason: str | None,
        notes: str | None,
        expected_status: ApplicationStatus | None,
    ) -> StageReviewResult:
        async with unit_of_work(self.session):
            application = await self._lock_for(
                user,
                application_id,
                ReviewStage.FINAL_APPROVAL,
                operation.value,
                expected_status,
            )
            reviews = await self._cycle_reviews(application)

            if operation == Operation.SSC_FINAL_APPROVAL:
                prepare = approved_amount_setter(approved_amount)
            else:

                async def prepare(app: Application) -> None:
                    app.rejection_reason = rejection_reason

            entry, event = await self.state_machine.apply_transition(
                application,
                operation,
                user,
                notes=notes if operation == Operation.SSC_FINAL_APPROVAL else rejection_reason,
                prepare=prepare,
            )
            decision = SscDecision(
                application_id=application.id,
                decision=(
                    SscDecisionType.APPROVED
                    if operation == Operation.SSC_FINAL_APPROVAL
                    else SscDecisionType.REJECTED
                ),
                approved_amount=application.approved_amount if operation == Operation.SSC_FINAL_APPROVAL else None,
                rejection_reason=rejection_reason,
                notes=notes,
                cycle=application.review_cycle or 1,
                all_reviews_data=[_review_snapshot(r) for r in reviews],
                decided_by=user.user_id,
                decided_at=_now(),
            )
            self.session.add(decision)
            await self.session.flush()

        warnings = await self.state_machine.dispatch([event])
        if operation == Operation.SSC_FINAL_APPROVAL:
            warning = await self._enroll_scholar(application)
            if warning is not None:
                warnings.append(warning)
        return StageReviewResult(application, None, decision, entry, [event], warnings)

    async def final_approval(
        self,
        user: UserContext,
        application_id: int,
        *,
        approved_amount: Decimal,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        """Chairperson approval: reserves funds, then enrolls the scholar (best effort)."""
        require_actor(user)
        return await self._final(
            user,
            application_id,
            Operation.SSC_FINAL_APPROVAL,
            approved_amount=approved_amount,
            rejection_reason=None,
            notes=notes,
            expected_status=expected_status,
        )

    async def final_rejection(
        self,
        user: UserContext,
        application_id: int,
        *,
        rejection_reason: str,
        notes: str | None = None,
        expected_status: ApplicationStatus | None = None,
    ) -> StageReviewResult:
        require_actor(user)
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("rejection_reason", "is required")
        return await self._final(
            user,
            application_id,
            Operation.SSC_FINAL_REJECTION,
            approved_amount=None,
            rejection_reason=rejection_reason,
            notes=notes,
            expected_status=expected_status,
        )

    async def _enroll_scholar(self, application: Application) -> DownstreamSideEffectFailure | None:
        try:
            await self.registry.register_scholar(
                applicant_id=application.applicant_id,
                application_number=application.application_number,
                school_id=application.school_id,
                academic_period_id=application.academic_period_id,
                approved_amount=application.approved_amount,
            )
        except Exception as exc:
            logger.warning(
                "Student registry enrollment failed for %s: %s",
                application.application_number,
                exc,
            )
            return DownstreamSideEffectFailure(
                side_effect="student_registry_enrollment",
                message=str(exc),
                context={"application_id": application.id},
            )
        return None

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def review_history(self, user: UserContext, application_id: int) -> list[StageReview]:
        """Every stage review of an application across cycles, oldest first."""
        application = await _visible_application(self.session, user, application_id)
        stmt = (
            select(StageReview)
            .where(StageReview.application_id == application.id)
            .order_by(StageReview.id)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def stage_queue(self, user: UserContext, stage: ReviewStage) -> list[Application]:
        """Applications waiting on ``stage`` that ``user`` may review."""
        stage = ReviewStage(stage)
        if stage == ReviewStage.FINAL_APPROVAL:
            stmt = select(Application).where(Application.status == ApplicationStatus.SSC_FINAL_APPROVAL)
            candidates = list((await self.session.execute(stmt.order_by(Application.id))).scalars().all())
        else:
            stmt = select(Application).where(Application.status.in_(list(_SSC_STATUSES)))
            candidates = [
                app
                for app in (await self.session.execute(stmt.order_by(Application.id))).scalars().all()
                if stage_outcome(app.stage_status, stage)
                in (StageOutcome.PENDING, StageOutcome.REVISION_REQUESTED)
            ]
        return [app for app in candidates if self.authorizer.may_act(user, stage, app)]

    async def parked_applications(self, *, older_than_days: int | None = None) -> list[ParkedApplication]:
        """Applications with a stage left rejected for longer than the threshold."""
        days = settings.PARKED_STAGE_DAYS if older_than_days is None else older_than_days
        now = _now()
        cutoff = now - timedelta(days=days)
        stmt = select(Application).where(Application.status.in_(list(_SSC_STATUSES)))
        parked = []
        for app in (await self.session.execute(stmt.order_by(Application.id))).scalars().all():
            for stage in PARALLEL_STAGES:
                entry = (app.stage_status or {}).get(stage.value) or {}
                if entry.get("status") != StageOutcome.REJECTED.value or not entry.get("timestamp"):
                    continue
                rejected_at = datetime.fromisoformat(entry["timestamp"])
                if rejected_at.tzinfo is None:
                    rejected_at = rejected_at.replace(tzinfo=UTC)
                if rejected_at <= cutoff:
                    parked.append(
                        ParkedApplication(
                            application=app,
                            stage=stage,
                            rejected_at=rejected_at,
                            days_parked=(now - rejected_at).days,
                        )
                    )
        return parked


async def _visible_application(session: AsyncSession, user: UserContext, application_id: int) -> Application:
    stmt = apply_data_scope(select(Application).where(Application.id == application_id), user.data_scope)
    application = (await session.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound(application_id)
    return application


def _review_snapshot(review: StageReview) -> dict:
    return {
        "stage": ReviewStage(review.stage).value,
        "reviewer_id": review.reviewer_id,
        "reviewer_role": review.reviewer_role,
        "outcome": StageOutcome(review.outcome).value,
        "notes": review.notes,
        "data": review.review_data,
        "reviewed_at": review.reviewed_at.isoformat() if review.reviewed_at else None,
    }
