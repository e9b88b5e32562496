"""Budget balance arithmetic.

``BudgetBalance`` is an immutable value: every ledger movement returns a new
balance or raises, so the invariant
``allocated >= spent + reserved >= 0`` can never be observed broken.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from scholarship_db.enums import TransactionType

from ..core.errors import InsufficientFunds, ReservationMismatch, ValidationError

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalize an amount to a two-place Decimal."""
    return Decimal(str(value)).quantize(CENTS)


@dataclass(frozen=True)
class BudgetBalance:
    allocated: Decimal = ZERO
    spent: Decimal = ZERO
    reserved: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.allocated - self.spent - self.reserved

    @property
    def committed(self) -> Decimal:
        """Spent plus reserved: the floor a downward adjustment may not cross."""
        return self.spent + self.reserved

    def reserve(self, amount: Decimal) -> "BudgetBalance":
        amount = _positive(amount)
        if amount > self.available:
            raise InsufficientFunds(requested=amount, available=self.available)
        return BudgetBalance(self.allocated, self.spent, self.reserved + amount)

    def release(self, amount: Decimal) -> "BudgetBalance":
        amount = _positive(amount)
        if amount > self.reserved:
            raise ReservationMismatch(requested=amount, reserved=self.reserved)
        return BudgetBalance(self.allocated, self.spent, self.reserved - amount)

    def disburse(self, amount: Decimal) -> "BudgetBalance":
        amount = _positive(amount)
        if amount > self.reserved:
            raise ReservationMismatch(requested=amount, reserved=self.reserved)
        return BudgetBalance(self.allocated, self.spent + amount, self.reserved - amount)

    def adjust(self, delta: Decimal) -> "BudgetBalance":
        delta = to_money(delta)
        allocated = self.allocated + delta
        if allocated < self.committed:
            raise InsufficientFunds(requested=-delta, available=self.available)
        return BudgetBalance(allocated, self.spent, self.reserved)

    def apply(self, transaction_type: TransactionType, amount: Decimal) -> "BudgetBalance":
        """Apply one ledger movement by type."""
        transaction_type = TransactionType(transaction_type)
        if transaction_type == TransactionType.RESERVATION:
            return self.reserve(amount)
        if transaction_type == TransactionType.RELEASE:
            return self.release(amount)
        if transaction_type == TransactionType.DISBURSEMENT:
            return self.disburse(amount)
        return self.adjust(amount)


def _positive(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("amount", "must be greater than zero")
    return amount


def replay(transactions: Iterable) -> BudgetBalance:
    """Fold ledger rows (transaction_type, amount) from a zero balance."""
    balance = BudgetBalance()
    for txn in transactions:
        balance = balance.apply(txn.transaction_type, txn.amount)
    return balance
