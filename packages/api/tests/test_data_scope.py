"""Unit tests for data scope construction and committee stage authorization."""

from types import SimpleNamespace

import pytest
from scholarship_db.enums import ReviewStage, UserRole

from scholarship_api.core.auth import build_data_scope
from scholarship_api.services.authorizer import StaticRoleAuthorizer

from .personas import admin, applicant_ana, budget_dept, chairperson, city_council, officer

# ---------------------------------------------------------------------------
# Data scope
# ---------------------------------------------------------------------------


def test_applicant_scope_own_data_only():
    """Applicants get own_data_only=True with their user_id."""
    scope = build_data_scope(UserRole.APPLICANT, "ana-123")
    assert scope.own_data_only is True
    assert scope.user_id == "ana-123"
    assert scope.full_pipeline is False


@pytest.mark.parametrize(
    "role",
    [UserRole.ADMIN, UserRole.SCHOLARSHIP_OFFICER, UserRole.SSC_MEMBER, UserRole.FINANCE_OFFICER],
)
def test_staff_scope_full_pipeline(role):
    scope = build_data_scope(role, "staff-1")
    assert scope.full_pipeline is True
    assert scope.own_data_only is False


# ---------------------------------------------------------------------------
# Stage authorizer
# ---------------------------------------------------------------------------

_APP = SimpleNamespace(id=1)


def test_committee_role_maps_to_its_stage():
    authorizer = StaticRoleAuthorizer()
    assert authorizer.may_act(city_council(), ReviewStage.DOCUMENT_VERIFICATION, _APP)
    assert not authorizer.may_act(city_council(), ReviewStage.FINANCIAL_REVIEW, _APP)
    assert authorizer.may_act(chairperson(), ReviewStage.FINAL_APPROVAL, _APP)


def test_non_committee_roles_cannot_act():
    authorizer = StaticRoleAuthorizer()
    for user in (officer(), applicant_ana()):
        assert not any(authorizer.may_act(user, stage, _APP) for stage in ReviewStage)


def test_admin_may_act_everywhere():
    authorizer = StaticRoleAuthorizer()
    assert all(authorizer.may_act(admin(), stage, _APP) for stage in ReviewStage)
    assert authorizer.stages_for(admin()) == list(ReviewStage)


def test_stages_for_member():
    assert StaticRoleAuthorizer().stages_for(budget_dept()) == [ReviewStage.FINANCIAL_REVIEW]
