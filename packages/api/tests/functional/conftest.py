"""Fixtures for functional tests.

Requests run through the real app from ``scholarship_api.main`` against the
in-memory SQLite database of the test. Each request gets its own session,
as in production. The caller is picked per request with the ``X-Persona``
header so one test can walk an application across several roles.
``_clean_overrides`` clears dependency_overrides after every test.
"""

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends, HTTPException, Request, status
from scholarship_db import DatabaseService, get_db, get_db_service

from scholarship_api.dependencies import get_stage_engine, get_state_machine
from scholarship_api.main import app as real_app
from scholarship_api.middleware.auth import get_current_user
from scholarship_api.schemas.auth import UserContext
from scholarship_api.services.stage_review import StageReviewEngine
from scholarship_api.services.state_machine import ApplicationStateMachine

from .. import personas

PERSONAS = {
    "ana": personas.applicant_ana,
    "ben": personas.applicant_ben,
    "officer": personas.officer,
    "finance": personas.finance_officer,
    "admin": personas.admin,
    "council": personas.city_council,
    "budget": personas.budget_dept,
    "education": personas.education_affairs,
    "chair": personas.chairperson,
}


def _persona_user(request: Request) -> UserContext:
    name = request.headers.get("x-persona")
    if name is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return PERSONAS[name]()


@pytest.fixture(autouse=True)
def _clean_overrides():
    """Clear app dependency overrides after each test."""
    yield
    real_app.dependency_overrides.clear()


@pytest.fixture
def app(engine, session_factory, notifier, registry):
    """The real FastAPI app wired to the test database and fake gateways."""

    async def _get_db():
        async with session_factory() as session:
            yield session

    async def _get_state_machine(session=Depends(get_db)):
        return ApplicationStateMachine(session, notifier=notifier)

    async def _get_stage_engine(state_machine=Depends(get_state_machine)):
        return StageReviewEngine(state_machine.session, state_machine=state_machine, registry=registry)

    real_app.dependency_overrides[get_db] = _get_db
    real_app.dependency_overrides[get_db_service] = lambda: DatabaseService(engine)
    real_app.dependency_overrides[get_current_user] = _persona_user
    real_app.dependency_overrides[get_state_machine] = _get_state_machine
    real_app.dependency_overrides[get_stage_engine] = _get_stage_engine
    return real_app


@pytest_asyncio.fixture
async def make_client(app):
    """Factory fixture: return an AsyncClient acting as the named persona."""
    clients = []

    def _make(persona: str | None) -> httpx.AsyncClient:
        headers = {"X-Persona": persona} if persona else {}
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
            headers=headers,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
