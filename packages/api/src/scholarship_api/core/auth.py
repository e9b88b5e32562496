"""Pure auth utility functions with no FastAPI or HTTP dependencies."""

from scholarship_db.enums import UserRole

from ..schemas.auth import DataScope

STAFF_ROLES = frozenset(
    {
        UserRole.ADMIN,
        UserRole.SCHOLARSHIP_OFFICER,
        UserRole.SSC_MEMBER,
        UserRole.FINANCE_OFFICER,
    }
)


def build_data_scope(role: UserRole, user_id: str) -> DataScope:
    """Build data scope rules based on the user's role."""
    if role == UserRole.APPLICANT:
        return DataScope(own_data_only=True, user_id=user_id)
    if role in STAFF_ROLES:
        return DataScope(full_pipeline=True)
    return DataScope()
