"""FastAPI dependencies that build the workflow services for one request.

Both services share the request's session (FastAPI caches ``get_db`` per
request), so tests override ``get_db`` alone, or these factories to inject
fake gateways.
"""

from fastapi import Depends
from scholarship_db import get_db
from sqlalchemy.ext.asyncio import AsyncSession

from .services.notifications import get_notification_gateway
from .services.registry import get_student_registry
from .services.stage_review import StageReviewEngine
from .services.state_machine import ApplicationStateMachine


async def get_state_machine(session: AsyncSession = Depends(get_db)) -> ApplicationStateMachine:
    return ApplicationStateMachine(session, notifier=get_notification_gateway())


async def get_stage_engine(
    state_machine: ApplicationStateMachine = Depends(get_state_machine),
) -> StageReviewEngine:
    return StageReviewEngine(
        state_machine.session,
        state_machine=state_machine,
        registry=get_student_registry(),
    )
