"""Budget ledger service.

Every money movement is one read-modify-write on the budget row, taken
under a row lock (``SELECT ... FOR UPDATE``) scoped to that single budget,
plus one appended BudgetTransaction snapshotting the available balance
before and after. Unrelated budgets never contend.

The movement functions flush but do not commit: the state machine calls them
inside its own unit of work so an application transition and its money side
effect commit together. ``allocate_budget`` and ``adjust_allocation`` are
the only movements exposed to callers outside the lifecycle (administrators).
Movements made for an application transition are audited by that
transition; pass ``audit`` to record standalone movements.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from scholarship_db import Application, Budget, BudgetTransaction
from scholarship_db.enums import BudgetStatus, TransactionType
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    BudgetNotFound,
    InsufficientFunds,
    InvalidStateTransition,
    ReservationMismatch,
    ScholarshipError,
    ValidationError,
)
from ..domain.balance import ZERO, BudgetBalance, replay, to_money
from ..domain.references import (
    ApplicationRef,
    DisbursementRef,
    LedgerReference,
    ManualAdjustment,
    to_columns,
)
from ..schemas.auth import UserContext
from .audit import AuditTrail

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def balance_of(budget: Budget) -> BudgetBalance:
    return BudgetBalance(
        allocated=to_money(budget.allocated_amount),
        spent=to_money(budget.spent_amount),
        reserved=to_money(budget.reserved_amount),
    )


def effective_status(budget: Budget, today: date | None = None) -> BudgetStatus:
    """Stored status, except budgets past their validity window read as expired."""
    today = today or datetime.now(UTC).date()
    if budget.valid_until is not None and budget.valid_until < today:
        return BudgetStatus.EXPIRED
    return BudgetStatus(budget.status)


async def get_budget(session: AsyncSession, budget_id: int) -> Budget:
    budget = await session.get(Budget, budget_id)
    if budget is None:
        raise BudgetNotFound(budget_id)
    return budget


async def list_budgets(
    session: AsyncSession,
    *,
    offset: int = 0,
    limit: int = 20,
    academic_period_id: int | None = None,
    school_id: str | None = None,
) -> tuple[list[Budget], int]:
    stmt = select(Budget)
    if academic_period_id is not None:
        stmt = stmt.where(Budget.academic_period_id == academic_period_id)
    if school_id is not None:
        stmt = stmt.where(Budget.school_id == school_id)

    total = (await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await session.execute(stmt.order_by(Budget.id).offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def list_transactions(
    session: AsyncSession,
    budget_id: int,
    *,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[BudgetTransaction], int]:
    await get_budget(session, budget_id)
    base = select(BudgetTransaction).where(BudgetTransaction.budget_id == budget_id)
    total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0
    result = await session.execute(
        base.order_by(BudgetTransaction.id).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total


async def resolve_budget_for(session: AsyncSession, application: Application) -> Budget | None:
    """The school's budget for the application's period, else the foundation pool."""
    if application.budget_id is not None:
        return await session.get(Budget, application.budget_id)

    if application.school_id is not None:
        stmt = select(Budget).where(
            Budget.school_id == application.school_id,
            Budget.academic_period_id == application.academic_period_id,
        )
        budget = (await session.execute(stmt)).scalar_one_or_none()
        if budget is not None:
            return budget

    stmt = select(Budget).where(
        Budget.school_id.is_(None),
        Budget.academic_period_id == application.academic_period_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def outstanding_reservation(
    session: AsyncSession, budget_id: int, application_id: int
) -> Decimal:
    """Amount still reserved on ``budget_id`` for one application."""
    signed = case(
        (BudgetTransaction.transaction_type == TransactionType.RESERVATION, BudgetTransaction.amount),
        (
            BudgetTransaction.transaction_type.in_(
                [TransactionType.RELEASE, TransactionType.DISBURSEMENT]
            ),
            -BudgetTransaction.amount,
        ),
        else_=0,
    )
    stmt = select(func.coalesce(func.sum(signed), 0)).where(
        BudgetTransaction.budget_id == budget_id,
        BudgetTransaction.application_id == application_id,
    )
    return to_money((await session.execute(stmt)).scalar() or ZERO)


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------


def _checked(budget_id: int, movement):
    """Run a balance movement, attaching the budget id to balance errors."""
    try:
        return movement()
    except InsufficientFunds as exc:
        raise InsufficientFunds(exc.requested, exc.available, budget_id) from None
    except ReservationMismatch as exc:
        raise ReservationMismatch(exc.requested, exc.reserved, budget_id) from None


async def _lock_budget(session: AsyncSession, budget_id: int) -> Budget:
    stmt = (
        select(Budget)
        .where(Budget.id == budget_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    budget = (await session.execute(stmt)).scalar_one_or_none()
    if budget is None:
        raise BudgetNotFound(budget_id)
    return budget


async def _append(
    session: AsyncSession,
    budget: Budget,
    after: BudgetBalance,
    *,
    transaction_type: TransactionType,
    amount: Decimal,
    reference: LedgerReference,
    actor: UserContext,
    notes: str | None,
    audit: AuditTrail | None,
) -> BudgetTransaction:
    before = balance_of(budget)
    budget.allocated_amount = after.allocated
    budget.spent_amount = after.spent
    budget.reserved_amount = after.reserved

    columns = to_columns(reference)
    if notes is not None:
        columns["notes"] = notes
    txn = BudgetTransaction(
        budget_id=budget.id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=before.available,
        balance_after=after.available,
        performed_by=actor.user_id,
        **columns,
    )
    session.add(txn)
    await session.flush()

    if audit is not None:
        await audit.record(
            session,
            event_type=f"ledger_{transaction_type.value}",
            user_id=actor.user_id,
            user_role=actor.role.value,
            application_id=columns.get("application_id"),
            budget_id=budget.id,
            event_data={
                "transaction_id": txn.id,
                "amount": str(amount),
                "balance_before": str(before.available),
                "balance_after": str(after.available),
                "reference_type": columns["reference_type"].value,
                "reference_id": columns.get("reference_id"),
            },
        )
    logger.info(
        "Budget %s %s %s (available %s -> %s) by %s",
        budget.id,
        transaction_type.value,
        amount,
        before.available,
        after.available,
        actor.user_id,
    )
    return txn


async def reserve_funds(
    session: AsyncSession,
    budget_id: int,
    amount: Decimal,
    reference: ApplicationRef,
    actor: UserContext,
    *,
    audit: AuditTrail | None = None,
) -> BudgetTransaction:
    """Commit funds to an approved application.

    Idempotent on (application, amount): if that exact reservation is still
    outstanding the existing transaction is returned.

    Raises:
        InsufficientFunds: amount exceeds the available balance.
        InvalidStateTransition: the budget is expired, or the application
            already holds a different reservation.
    """
    amount = to_money(amount)
    budget = await _lock_budget(session, budget_id)

    status = effective_status(budget)
    if status == BudgetStatus.EXPIRED:
        raise InvalidStateTransition(
            "reserve_funds", status.value, f"Budget {budget_id} is expired"
        )

    outstanding = await outstanding_reservation(session, budget_id, reference.application_id)
    if outstanding > ZERO:
        if outstanding == amount:
            stmt = (
                select(BudgetTransaction)
                .where(
                    BudgetTransaction.budget_id == budget_id,
                    BudgetTransaction.application_id == reference.application_id,
                    BudgetTransaction.transaction_type == TransactionType.RESERVATION,
                )
                .order_by(BudgetTransaction.id.desc())
                .limit(1)
            )
            logger.info(
                "Reservation for application %s already outstanding; not duplicating",
                reference.application_id,
            )
            return (await session.execute(stmt)).scalar_one()
        raise InvalidStateTransition(
            "reserve_funds",
            "reserved",
            f"Application {reference.application_id} already holds a reservation of {outstanding}",
        )

    after = _checked(budget_id, lambda: balance_of(budget).reserve(amount))
    return await _append(
        session,
        budget,
        after,
        transaction_type=TransactionType.RESERVATION,
        amount=amount,
        reference=reference,
        actor=actor,
        notes=None,
        audit=audit,
    )


async def release_funds(
    session: AsyncSession,
    budget_id: int,
    amount: Decimal,
    reference: ApplicationRef,
    actor: UserContext,
    *,
    notes: str | None = None,
    audit: AuditTrail | None = None,
) -> BudgetTransaction:
    """Return a reservation to the available balance.

    Raises:
        ReservationMismatch: amount exceeds what is still reserved for the
            application (double release).
    """
    amount = to_money(amount)
    budget = await _lock_budget(session, budget_id)

    outstanding = await outstanding_reservation(session, budget_id, reference.application_id)
    if amount > outstanding:
        raise ReservationMismatch(amount, outstanding, budget_id)

    after = _checked(budget_id, lambda: balance_of(budget).release(amount))
    if budget.status == BudgetStatus.DEPLETED and after.available > ZERO:
        budget.status = BudgetStatus.ACTIVE
    return await _append(
        session,
        budget,
        after,
        transaction_type=TransactionType.RELEASE,
        amount=amount,
        reference=reference,
        actor=actor,
        notes=notes,
        audit=audit,
    )


async def record_disbursement(
    session: AsyncSession,
    budget_id: int,
    amount: Decimal,
    reference: DisbursementRef,
    actor: UserContext,
    *,
    audit: AuditTrail | None = None,
) -> BudgetTransaction:
    """Convert a reservation into spend. Available balance is unchanged.

    The budget is marked depleted once nothing is left available.
    """
    amount = to_money(amount)
    budget = await _lock_budget(session, budget_id)

    if reference.application_id is not None:
        outstanding = await outstanding_reservation(session, budget_id, reference.application_id)
        if amount > outstanding:
            raise ReservationMismatch(amount, outstanding, budget_id)

    after = _checked(budget_id, lambda: balance_of(budget).disburse(amount))
    if after.available <= ZERO:
        budget.status = BudgetStatus.DEPLETED
    return await _append(
        session,
        budget,
        after,
        transaction_type=TransactionType.DISBURSEMENT,
        amount=amount,
        reference=reference,
        actor=actor,
        notes=None,
        audit=audit,
    )


async def adjust_allocation(
    session: AsyncSession,
    budget_id: int,
    delta: Decimal,
    reason: str,
    actor: UserContext,
    *,
    audit: AuditTrail | None = None,
) -> BudgetTransaction:
    """Raise or lower the allocation. Never below spent + reserved.

    A depleted budget becomes active again once something is available.
    """
    delta = to_money(delta)
    if delta == ZERO:
        raise ValidationError("delta", "must not be zero")
    if not reason or not reason.strip():
        raise ValidationError("reason", "is required")

    budget = await _lock_budget(session, budget_id)
    after = _checked(budget_id, lambda: balance_of(budget).adjust(delta))
    if budget.status == BudgetStatus.DEPLETED and after.available > ZERO:
        budget.status = BudgetStatus.ACTIVE
    elif budget.status == BudgetStatus.ACTIVE and after.available <= ZERO:
        budget.status = BudgetStatus.DEPLETED
    return await _append(
        session,
        budget,
        after,
        transaction_type=TransactionType.ADJUSTMENT,
        amount=delta,
        reference=ManualAdjustment(reason=reason),
        actor=actor,
        notes=reason,
        audit=audit,
    )


async def allocate_budget(
    session: AsyncSession,
    *,
    school_id: str | None,
    academic_period_id: int,
    amount: Decimal,
    actor: UserContext,
    valid_from: date | None = None,
    valid_until: date | None = None,
    audit: AuditTrail | None = None,
) -> Budget:
    """Create a budget pool and record its initial allocation as an adjustment.

    ``school_id=None`` creates the foundation-wide pool for the period.
    """
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("amount", "must be greater than zero")
    if valid_from and valid_until and valid_until < valid_from:
        raise ValidationError("valid_until", "must not be before valid_from")

    school_clause = Budget.school_id.is_(None) if school_id is None else Budget.school_id == school_id
    existing = await session.execute(
        select(Budget.id).where(school_clause, Budget.academic_period_id == academic_period_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise ValidationError(
            "school_id", "a budget already exists for this school and academic period"
        )

    budget = Budget(
        school_id=school_id,
        academic_period_id=academic_period_id,
        allocated_amount=ZERO,
        spent_amount=ZERO,
        reserved_amount=ZERO,
        status=BudgetStatus.ACTIVE,
        valid_from=valid_from,
        valid_until=valid_until,
    )
    session.add(budget)
    await session.flush()

    await adjust_allocation(
        session, budget.id, amount, "Initial allocation", actor, audit=audit
    )
    return budget


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationReport:
    budget_id: int
    stored: BudgetBalance
    replayed: BudgetBalance
    transactions_checked: int
    first_break_id: int | None = None

    @property
    def balanced(self) -> bool:
        return self.stored == self.replayed and self.first_break_id is None


async def reconcile_budget(session: AsyncSession, budget_id: int) -> ReconciliationReport:
    """Replay the ledger from zero and compare with the stored budget.

    Also checks the running balance chain: each row's balance_before must
    equal the previous row's balance_after, and balance_after must match the
    replayed available balance at that point. A row that cannot be applied
    at all (an over-release, an overdraw) is reported as the break; the
    replayed balance is then the one reached just before it.
    """
    budget = await get_budget(session, budget_id)
    result = await session.execute(
        select(BudgetTransaction)
        .where(BudgetTransaction.budget_id == budget_id)
        .order_by(BudgetTransaction.id)
    )
    transactions = list(result.scalars().all())

    first_break_id = None
    running = BudgetBalance()
    for txn in transactions:
        before = running.available
        try:
            running = running.apply(txn.transaction_type, txn.amount)
        except ScholarshipError as exc:
            # A row the balance rules could never have produced.
            logger.warning("Budget %s transaction %s cannot be replayed: %s", budget_id, txn.id, exc)
            first_break_id = txn.id
            break
        if to_money(txn.balance_before) != before or to_money(txn.balance_after) != running.available:
            first_break_id = txn.id
            break

    report = ReconciliationReport(
        budget_id=budget_id,
        stored=balance_of(budget),
        replayed=replay(transactions) if first_break_id is None else running,
        transactions_checked=len(transactions),
        first_break_id=first_break_id,
    )
    if not report.balanced:
        logger.warning(
            "Budget %s does not reconcile: stored=%s replayed=%s break=%s",
            budget_id,
            report.stored,
            report.replayed,
            first_break_id,
        )
    return report
