"""Student registry client used to enroll approved scholars.

Enrollment is best effort: a failure is logged and reported as a warning,
the committee approval stands.
"""

import logging
from decimal import Decimal
from typing import Protocol

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)


class StudentRegistryClient(Protocol):
    async def register_scholar(
        self,
        *,
        applicant_id: str,
        application_number: str,
        school_id: str | None,
        academic_period_id: int,
        approved_amount: Decimal,
    ) -> None: ...


class NullStudentRegistry:
    """Used when no registry is configured."""

    async def register_scholar(self, **kwargs) -> None:
        logger.info(
            "No student registry configured; skipping enrollment of %s",
            kwargs.get("application_number"),
        )


class HttpStudentRegistry:
    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def register_scholar(
        self,
        *,
        applicant_id: str,
        application_number: str,
        school_id: str | None,
        academic_period_id: int,
        approved_amount: Decimal,
    ) -> None:
        payload = {
            "applicant_id": applicant_id,
            "application_number": application_number,
            "school_id": school_id,
            "academic_period_id": academic_period_id,
            "approved_amount": str(approved_amount),
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/scholars", json=payload)
            response.raise_for_status()
        logger.info("Registered scholar %s (%s)", applicant_id, application_number)


def get_student_registry() -> StudentRegistryClient:
    if settings.STUDENT_REGISTRY_URL:
        return HttpStudentRegistry(
            settings.STUDENT_REGISTRY_URL,
            timeout=settings.INTEGRATION_TIMEOUT_SECONDS,
        )
    return NullStudentRegistry()
