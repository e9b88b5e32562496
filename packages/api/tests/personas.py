"""Persona factories.

Each function returns a UserContext matching the DataScope built by
``core/auth.py:build_data_scope()`` for that role. Fixed user IDs ensure
cross-test consistency.
"""

from scholarship_db.enums import SscRole, UserRole

from scholarship_api.core.auth import build_data_scope
from scholarship_api.schemas.auth import UserContext

# Fixed IDs for cross-test referencing
ANA_USER_ID = "ana-santos-001"
BEN_USER_ID = "ben-reyes-002"
OFFICER_USER_ID = "carla-dizon-officer"
FINANCE_USER_ID = "dan-lim-finance"
ADMIN_USER_ID = "admin-user"
COUNCIL_USER_ID = "councilor-ella"
BUDGET_USER_ID = "budget-frank"
EDUCATION_USER_ID = "education-gina"
CHAIR_USER_ID = "chair-hugo"


def _user(user_id: str, role: UserRole, name: str, ssc_roles=()) -> UserContext:
    return UserContext(
        user_id=user_id,
        role=role,
        email=f"{user_id}@scholarship.example",
        name=name,
        ssc_roles=frozenset(ssc_roles),
        data_scope=build_data_scope(role, user_id),
    )


def applicant_ana() -> UserContext:
    return _user(ANA_USER_ID, UserRole.APPLICANT, "Ana Santos")


def applicant_ben() -> UserContext:
    return _user(BEN_USER_ID, UserRole.APPLICANT, "Ben Reyes")


def officer() -> UserContext:
    return _user(OFFICER_USER_ID, UserRole.SCHOLARSHIP_OFFICER, "Carla Dizon")


def finance_officer() -> UserContext:
    return _user(FINANCE_USER_ID, UserRole.FINANCE_OFFICER, "Dan Lim")


def admin() -> UserContext:
    return _user(ADMIN_USER_ID, UserRole.ADMIN, "Admin")


def city_council() -> UserContext:
    return _user(COUNCIL_USER_ID, UserRole.SSC_MEMBER, "Ella Cruz", [SscRole.CITY_COUNCIL])


def budget_dept() -> UserContext:
    return _user(BUDGET_USER_ID, UserRole.SSC_MEMBER, "Frank Go", [SscRole.BUDGET_DEPT])


def education_affairs() -> UserContext:
    return _user(EDUCATION_USER_ID, UserRole.SSC_MEMBER, "Gina Tan", [SscRole.EDUCATION_AFFAIRS])


def chairperson() -> UserContext:
    return _user(CHAIR_USER_ID, UserRole.SSC_MEMBER, "Hugo Ramos", [SscRole.CHAIRPERSON])
