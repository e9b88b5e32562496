"""Budget ledger request/response schemas."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from scholarship_db.enums import BudgetStatus, ReferenceType, TransactionType

from . import Pagination


class BudgetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    school_id: str | None = None
    academic_period_id: int
    allocated_amount: Decimal
    spent_amount: Decimal
    reserved_amount: Decimal
    available_amount: Decimal
    status: BudgetStatus
    valid_from: date | None = None
    valid_until: date | None = None
    created_at: datetime
    updated_at: datetime


class BudgetListResponse(BaseModel):
    data: list[BudgetResponse]
    pagination: Pagination


class BudgetTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    budget_id: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: ReferenceType
    reference_id: int | None = None
    reference: str | None = None
    application_id: int | None = None
    notes: str | None = None
    performed_by: str
    created_at: datetime


class BudgetTransactionListResponse(BaseModel):
    data: list[BudgetTransactionResponse]
    pagination: Pagination


class BudgetAllocateRequest(BaseModel):
    """Create a budget pool. Omit ``school_id`` for the foundation-wide pool."""

    school_id: str | None = None
    academic_period_id: int
    amount: Decimal = Field(gt=0)
    valid_from: date | None = None
    valid_until: date | None = None


class BudgetAdjustRequest(BaseModel):
    delta: Decimal = Field(description="Positive to add funds, negative to withdraw them.")
    reason: str = Field(min_length=1)


class BalanceItem(BaseModel):
    allocated: Decimal
    spent: Decimal
    reserved: Decimal
    available: Decimal


class ReconciliationResponse(BaseModel):
    budget_id: int
    balanced: bool
    stored: BalanceItem
    replayed: BalanceItem
    transactions_checked: int
    first_break_id: int | None = None
