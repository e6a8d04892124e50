"""
api/main.py -- FastAPI application entry point for tenantgate.

Exposes registration, login, session and API key management over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Lifespan opens the credential store and wires the AuthService on startup and
disposes of the connection pool on shutdown.

Every response body is an envelope:
  success -> {"success": true,  "data": ...}
  failure -> {"success": false, "error": {"code": ..., "message": ...}}
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthOut, success_body
from api.routes.v1.api_keys import router as api_keys_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.organizations import router as organizations_router
from api.routes.v1.users import router as users_router
from auth.service import build_auth_service
from auth.store import CredentialStore, utc_iso
from core.config import get_settings
from core.errors import STATUS_CODES, AppError, InternalError, ValidationError

VERSION = "0.1.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tenantgate.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store and build the AuthService; close both on shutdown.

    app.state.settings and app.state.auth_service are read by
    auth/dependencies.py on every authenticated request.
    """
    logger.info("tenantgate API starting up")
    app.state.settings = settings
    app.state.store = CredentialStore(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )
    app.state.auth_service = build_auth_service(settings, app.state.store)
    logger.info("Credential store initialized")

    yield

    app.state.store.close()
    logger.info("tenantgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tenantgate API",
    description="Multi-tenant identity: users, organizations, sessions and API keys.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(api_keys_router, prefix="/api/v1", tags=["API Keys"])
app.include_router(organizations_router, prefix="/api/v1", tags=["Organizations"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a service-layer error with its fixed code and status."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_dict())).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 validation_error when the body or path fails validation.

    The message names the first offending field, e.g. "password: String
    should have at least 8 characters".
    """
    errors = exc.errors()
    message = ValidationError.default_message
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _error_response(ValidationError.status_code, ValidationError.code, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope framework errors (unknown route, wrong method, bad host)."""
    code = STATUS_CODES.get(exc.status_code, f"http_{exc.status_code}")
    return _error_response(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Only the exception type and a truncated message are logged; the client
    receives the generic internal_error envelope. SQL parameters never reach
    the log because the engine is created with hide_parameters=True.
    """
    logger.error(
        "Unhandled %s on %s %s: %.200s",
        type(exc).__name__,
        request.method,
        request.url.path,
        str(exc),
    )
    return _error_response(InternalError.status_code, InternalError.code, InternalError.default_message)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> dict:
    """Return liveness and version after a round trip to the database."""
    request.app.state.store.ping()
    return success_body(HealthOut(version=VERSION, timestamp=utc_iso()))
