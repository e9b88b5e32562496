"""Applicant notification gateways.

Notifications are fire-and-forget from the workflow's point of view: the
state machine dispatches them after the transition has committed and turns
any failure into a ``DownstreamSideEffectFailure`` warning.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChangedEvent:
    """Emitted once per committed transition."""

    application_id: int
    application_number: str
    applicant_id: str
    operation: str
    from_status: str
    to_status: str
    actor_id: str
    sequence: int
    occurred_at: datetime
    notes: str | None = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class NotificationGateway(Protocol):
    async def notify(self, event: StatusChangedEvent) -> None: ...


class LoggingNotificationGateway:
    """Default gateway: records the notification in the service log only."""

    async def notify(self, event: StatusChangedEvent) -> None:
        logger.info(
            "Notify applicant %s: application %s is now %s",
            event.applicant_id,
            event.application_number,
            event.to_status,
        )


class WebhookNotificationGateway:
    """POSTs each event as JSON to an external notification service."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def notify(self, event: StatusChangedEvent) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=event.as_dict())
            response.raise_for_status()


def get_notification_gateway() -> NotificationGateway:
    """Webhook gateway when NOTIFICATION_WEBHOOK_URL is set, logging gateway otherwise."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationGateway(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.INTEGRATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationGateway()
