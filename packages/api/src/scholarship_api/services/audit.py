"""Audit event service.

Writes append-only audit trail entries with a SHA-256 hash chain for tamper
evidence. On PostgreSQL an advisory lock serializes hash computation across
concurrent writers.

The state machine and ledger depend on the ``AuditTrail`` protocol, not on
this table; ``DatabaseAuditTrail`` is the default implementation and writes
inside the caller's transaction so the audit row commits or rolls back with
the state change it describes.
"""

import hashlib
import json
import logging
from typing import Protocol

from scholarship_db import AuditEvent
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Advisory lock held while linking a new event to the chain head.
AUDIT_LOCK_KEY = 900_001

GENESIS = "genesis"


def _compute_hash(event: AuditEvent) -> str:
    """Compute SHA-256 hash of an audit event's key fields and its link."""
    payload = "|".join(
        [
            str(event.id),
            event.event_type,
            str(event.application_id),
            str(event.budget_id),
            json.dumps(event.event_data, sort_keys=True, default=str),
            event.prev_hash or "",
        ]
    )
    return hashlib.sha256(payload.encode()).hexdigest()


async def _serialize_writers(session: AsyncSession) -> None:
    # Released automatically when the transaction commits or rolls back.
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(text(f"SELECT pg_advisory_xact_lock({AUDIT_LOCK_KEY})"))


async def write_audit_event(
    session: AsyncSession,
    *,
    event_type: str,
    user_id: str | None = None,
    user_role: str | None = None,
    application_id: int | None = None,
    budget_id: int | None = None,
    event_data: dict | None = None,
) -> AuditEvent:
    """Append one event linked to the hash of the latest row.

    Runs in the caller's transaction; ``event_type`` is a category such as
    ``status_transition`` or ``ledger_reservation``.
    """
    await _serialize_writers(session)

    latest_stmt = select(AuditEvent).order_by(AuditEvent.id.desc()).limit(1)
    prev_event = (await session.execute(latest_stmt)).scalar_one_or_none()
    prev_hash = _compute_hash(prev_event) if prev_event is not None else GENESIS

    audit = AuditEvent(
        event_type=event_type,
        user_id=user_id,
        user_role=user_role,
        application_id=application_id,
        budget_id=budget_id,
        event_data=event_data,
        prev_hash=prev_hash,
    )
    session.add(audit)
    await session.flush()
    return audit


async def verify_audit_chain(session: AsyncSession) -> dict:
    """Recompute every link in write order.

    Returns ``{"status": "OK", "events_checked": N}`` or, at the first row
    whose ``prev_hash`` does not match its predecessor,
    ``{"status": "TAMPERED", "first_break_id": id, "events_checked": N}``.
    """
    expected = GENESIS
    checked = 0
    for event in (await session.execute(select(AuditEvent).order_by(AuditEvent.id))).scalars():
        checked += 1
        if event.prev_hash != expected:
            logger.warning("Audit chain broken at event %s", event.id)
            return {"status": "TAMPERED", "first_break_id": event.id, "events_checked": checked}
        expected = _compute_hash(event)
    return {"status": "OK", "events_checked": checked}


async def get_audit_chain_length(session: AsyncSession) -> int:
    """Return the total number of audit events."""
    result = await session.execute(select(func.count(AuditEvent.id)))
    return result.scalar_one()


async def get_events_by_application(
    session: AsyncSession,
    application_id: int,
) -> list[AuditEvent]:
    """Return all audit events for an application in write order."""
    stmt = (
        select(AuditEvent)
        .where(AuditEvent.application_id == application_id)
        .order_by(AuditEvent.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


class AuditTrail(Protocol):
    async def record(
        self,
        session: AsyncSession,
        *,
        event_type: str,
        user_id: str,
        user_role: str | None,
        application_id: int | None = None,
        budget_id: int | None = None,
        event_data: dict | None = None,
    ) -> None: ...


class DatabaseAuditTrail:
    """AuditTrail backed by the hash-chained audit_events table."""

    async def record(
        self,
        session: AsyncSession,
        *,
        event_type: str,
        user_id: str,
        user_role: str | None,
        application_id: int | None = None,
        budget_id: int | None = None,
        event_data: dict | None = None,
    ) -> None:
        await write_audit_event(
            session,
            event_type=event_type,
            user_id=user_id,
            user_role=user_role,
            application_id=application_id,
            budget_id=budget_id,
            event_data=event_data,
        )
