"""Administrator audit trail query endpoints."""

from fastapi import APIRouter, Depends
from scholarship_db import get_db
from scholarship_db.enums import UserRole
from sqlalchemy.ext.asyncio import AsyncSession

from ..middleware.auth import require_roles
from ..schemas.audit import AuditByApplicationResponse, AuditChainVerifyResponse, AuditEventItem
from ..services.audit import get_events_by_application, verify_audit_chain

router = APIRouter()


@router.get(
    "/applications/{application_id}",
    response_model=AuditByApplicationResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def audit_by_application(
    application_id: int,
    session: AsyncSession = Depends(get_db),
) -> AuditByApplicationResponse:
    events = await get_events_by_application(session, application_id)
    return AuditByApplicationResponse(
        application_id=application_id,
        count=len(events),
        events=[AuditEventItem.model_validate(e) for e in events],
    )


@router.get(
    "/verify",
    response_model=AuditChainVerifyResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
async def verify_chain(
    session: AsyncSession = Depends(get_db),
) -> AuditChainVerifyResponse:
    """Walk the hash chain and report the first broken link, if any."""
    return AuditChainVerifyResponse(**await verify_audit_chain(session))
