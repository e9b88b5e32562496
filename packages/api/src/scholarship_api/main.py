"""FastAPI application entry point."""

import logging
import uuid
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .admin import setup_admin
from .core.config import settings
from .core.errors import ScholarshipError
from .routes import applications, audit, budgets, health, ssc
from .schemas.error import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application startup/shutdown lifecycle."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "Starting %s (auth %s)",
        settings.APP_NAME,
        "disabled" if settings.AUTH_DISABLED else "enabled",
    )
    yield


app = FastAPI(
    title="Scholarship Aid API",
    description="Scholarship application lifecycle, committee review and budget ledger",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

def _title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", str(uuid.uuid4()))


def _build_error(
    status_code: int,
    detail: str,
    request_id: str,
    *,
    instance: str = "",
    kind: str | None = None,
    code: str | None = None,
    context: dict | None = None,
) -> ErrorResponse:
    return ErrorResponse(
        type="about:blank",
        title=_title(status_code),
        status=status_code,
        detail=detail,
        request_id=request_id,
        instance=instance,
        kind=kind,
        code=code,
        context=context or {},
    )


@app.exception_handler(ScholarshipError)
async def scholarship_error_handler(request: Request, exc: ScholarshipError):
    """Render domain errors as RFC 7807 Problem Details with kind and context."""
    body = _build_error(
        exc.status_code,
        exc.message,
        _request_id(request),
        instance=request.url.path,
        kind=exc.kind,
        code=exc.code,
        context=exc.context,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTPException to RFC 7807 Problem Details."""
    body = _build_error(exc.status_code, str(exc.detail), _request_id(request), instance=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert Pydantic validation errors to RFC 7807 Problem Details."""
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    body = _build_error(
        422,
        "Request validation failed",
        _request_id(request),
        instance=request.url.path,
        kind="ValidationError",
        code="VALIDATION_ERROR",
        context={"errors": errors},
    )
    return JSONResponse(status_code=422, content=body.model_dump())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions -- log and return 500."""
    request_id = _request_id(request)
    logger.exception("Unhandled exception (request_id=%s)", request_id)
    body = _build_error(500, "An unexpected error occurred.", request_id)
    return JSONResponse(status_code=500, content=body.model_dump())


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(applications.router, prefix="/api/applications", tags=["applications"])
app.include_router(ssc.router, prefix="/api/ssc", tags=["committee"])
app.include_router(budgets.router, prefix="/api/budgets", tags=["budgets"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])

# Setup SQLAdmin dashboard at /admin
setup_admin(app)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Welcome to the Scholarship Aid API"}
