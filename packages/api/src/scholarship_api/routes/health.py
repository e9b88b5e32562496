"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from scholarship_db import DatabaseService, get_db_service

from .. import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    name: str
    status: str
    version: str


@router.get("/", response_model=list[HealthResponse])
async def health(db: DatabaseService = Depends(get_db_service)):
    """Report API and database health; 503 when the database is unreachable."""
    checks = [HealthResponse(name="api", status="healthy", version=__version__)]
    try:
        await db.health_check()
        checks.append(HealthResponse(name="database", status="healthy", version=__version__))
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        checks.append(HealthResponse(name="database", status="unhealthy", version=__version__))
        return JSONResponse(status_code=503, content=[c.model_dump() for c in checks])
    return checks
