"""Committee stage authorization.

The review engine only asks "may this actor act on this stage of this
application"; how committee roles are assigned stays outside of it.
"""

from typing import Protocol

from scholarship_db import Application
from scholarship_db.enums import ReviewStage, UserRole

from ..schemas.auth import UserContext


class Authorizer(Protocol):
    def may_act(self, user: UserContext, stage: ReviewStage, application: Application) -> bool: ...


class StaticRoleAuthorizer:
    """Reads the static committee role -> stage mapping from the caller's roles.

    Administrators may act on any stage.
    """

    def may_act(self, user: UserContext, stage: ReviewStage, application: Application) -> bool:
        if user.role == UserRole.ADMIN:
            return True
        if user.role != UserRole.SSC_MEMBER:
            return False
        return any(role.stage == stage for role in user.ssc_roles)

    def stages_for(self, user: UserContext) -> list[ReviewStage]:
        if user.role == UserRole.ADMIN:
            return list(ReviewStage)
        return sorted({role.stage for role in user.ssc_roles}, key=list(ReviewStage).index)
