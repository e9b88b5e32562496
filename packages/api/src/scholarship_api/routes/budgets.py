"""Budget ledger routes.

Reads are open to finance staff. The only mutations exposed are the
administrator's allocation and adjustment; reservations, releases and
disbursements happen through application operations.
"""

from fastapi import APIRouter, Depends, Query, status
from scholarship_db import get_db
from scholarship_db.enums import UserRole
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.balance import BudgetBalance
from ..domain.references import describe, from_columns
from ..middleware.auth import CurrentUser, require_roles
from ..schemas import Pagination
from ..schemas.budget import (
    BalanceItem,
    BudgetAdjustRequest,
    BudgetAllocateRequest,
    BudgetListResponse,
    BudgetResponse,
    BudgetTransactionListResponse,
    BudgetTransactionResponse,
    ReconciliationResponse,
)
from ..services import ledger
from ..services.audit import DatabaseAuditTrail
from ..services.state_machine import require_actor
from ..services.unit_of_work import unit_of_work

router = APIRouter()

_READERS = (UserRole.ADMIN, UserRole.FINANCE_OFFICER, UserRole.SCHOLARSHIP_OFFICER)


def _budget_response(budget) -> BudgetResponse:
    response = BudgetResponse.model_validate(budget)
    return response.model_copy(update={"status": ledger.effective_status(budget)})


def _transaction_response(txn) -> BudgetTransactionResponse:
    response = BudgetTransactionResponse.model_validate(txn)
    return response.model_copy(update={"reference": describe(from_columns(txn))})


def _balance_item(balance: BudgetBalance) -> BalanceItem:
    return BalanceItem(
        allocated=balance.allocated,
        spent=balance.spent,
        reserved=balance.reserved,
        available=balance.available,
    )


@router.get(
    "/",
    response_model=BudgetListResponse,
    dependencies=[Depends(require_roles(*_READERS))],
)
async def list_budgets(
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    academic_period_id: int | None = None,
    school_id: str | None = None,
) -> BudgetListResponse:
    budgets, total = await ledger.list_budgets(
        session,
        offset=offset,
        limit=limit,
        academic_period_id=academic_period_id,
        school_id=school_id,
    )
    return BudgetListResponse(
        data=[_budget_response(b) for b in budgets],
        pagination=Pagination(total=total, offset=offset, limit=limit, has_more=(offset + limit < total)),
    )


@router.post(
    "/",
    response_model=BudgetResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def allocate_budget(
    body: BudgetAllocateRequest,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> BudgetResponse:
    """Create a budget pool with its initial allocation."""
    require_actor(user)
    async with unit_of_work(session):
        budget = await ledger.allocate_budget(
            session,
            school_id=body.school_id,
            academic_period_id=body.academic_period_id,
            amount=body.amount,
            actor=user,
            valid_from=body.valid_from,
            valid_until=body.valid_until,
            audit=DatabaseAuditTrail(),
        )
    return _budget_response(budget)


@router.get(
    "/{budget_id}",
    response_model=BudgetResponse,
    dependencies=[Depends(require_roles(*_READERS))],
)
async def get_budget(
    budget_id: int,
    session: AsyncSession = Depends(get_db),
) -> BudgetResponse:
    return _budget_response(await ledger.get_budget(session, budget_id))


@router.post(
    "/{budget_id}/adjustments",
    response_model=BudgetTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def adjust_allocation(
    budget_id: int,
    body: BudgetAdjustRequest,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> BudgetTransactionResponse:
    """Raise or lower the allocation. Never below what is spent plus reserved."""
    require_actor(user)
    async with unit_of_work(session):
        txn = await ledger.adjust_allocation(
            session, budget_id, body.delta, body.reason, user, audit=DatabaseAuditTrail()
        )
    return _transaction_response(txn)


@router.get(
    "/{budget_id}/transactions",
    response_model=BudgetTransactionListResponse,
    dependencies=[Depends(require_roles(*_READERS))],
)
async def list_transactions(
    budget_id: int,
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> BudgetTransactionListResponse:
    transactions, total = await ledger.list_transactions(session, budget_id, offset=offset, limit=limit)
    return BudgetTransactionListResponse(
        data=[_transaction_response(t) for t in transactions],
        pagination=Pagination(total=total, offset=offset, limit=limit, has_more=(offset + limit < total)),
    )


@router.get(
    "/{budget_id}/reconciliation",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN, UserRole.FINANCE_OFFICER))],
)
async def reconcile_budget(
    budget_id: int,
    session: AsyncSession = Depends(get_db),
) -> ReconciliationResponse:
    """Replay the ledger from zero and compare it with the stored balances."""
    report = await ledger.reconcile_budget(session, budget_id)
    return ReconciliationResponse(
        budget_id=report.budget_id,
        balanced=report.balanced,
        stored=_balance_item(report.stored),
        replayed=_balance_item(report.replayed),
        transactions_checked=report.transactions_checked,
        first_break_id=report.first_break_id,
    )
