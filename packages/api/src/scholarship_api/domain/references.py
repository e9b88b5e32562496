"""What caused a ledger movement, as a closed tagged union."""

from dataclasses import dataclass

from scholarship_db.enums import ReferenceType


@dataclass(frozen=True)
class ApplicationRef:
    application_id: int


@dataclass(frozen=True)
class DisbursementRef:
    disbursement_id: int
    application_id: int | None = None


@dataclass(frozen=True)
class ManualAdjustment:
    reason: str


LedgerReference = ApplicationRef | DisbursementRef | ManualAdjustment


def to_columns(reference: LedgerReference) -> dict:
    """Column values for a BudgetTransaction row."""
    match reference:
        case ApplicationRef(application_id=app_id):
            return {
                "reference_type": ReferenceType.APPLICATION,
                "reference_id": app_id,
                "application_id": app_id,
            }
        case DisbursementRef(disbursement_id=disbursement_id, application_id=app_id):
            return {
                "reference_type": ReferenceType.DISBURSEMENT,
                "reference_id": disbursement_id,
                "application_id": app_id,
            }
        case ManualAdjustment(reason=reason):
            return {
                "reference_type": ReferenceType.MANUAL_ADJUSTMENT,
                "reference_id": None,
                "application_id": None,
                "notes": reason,
            }
    raise TypeError(f"Unknown ledger reference: {reference!r}")


def from_columns(txn) -> LedgerReference:
    """Rebuild the reference of a stored BudgetTransaction."""
    reference_type = ReferenceType(txn.reference_type)
    if reference_type == ReferenceType.APPLICATION:
        return ApplicationRef(application_id=txn.reference_id)
    if reference_type == ReferenceType.DISBURSEMENT:
        return DisbursementRef(disbursement_id=txn.reference_id, application_id=txn.application_id)
    return ManualAdjustment(reason=txn.notes or "")


def describe(reference: LedgerReference) -> str:
    """Short label such as ``application:7`` for listings."""
    match reference:
        case ApplicationRef(application_id=app_id):
            return f"application:{app_id}"
        case DisbursementRef(disbursement_id=disbursement_id):
            return f"disbursement:{disbursement_id}"
        case ManualAdjustment(reason=reason):
            return f"manual:{reason}"
    raise TypeError(f"Unknown ledger reference: {reference!r}")
