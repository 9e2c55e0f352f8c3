"""
api/main.py -- FastAPI application entry point for Credvault.

Exposes the credential core (auth/) over HTTP. The core raises typed
CredentialErrors; this module is the only place that maps them to status
codes.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (store, hasher, token service, orchestrator) and
shutdown (dispose the DB engine) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.delivery import log_reset_token
from auth.errors import (
    BadRequest,
    Conflict,
    CredentialError,
    Forbidden,
    HashingFailure,
    InvalidOrExpiredToken,
    NotFound,
    Unauthorized,
)
from auth.hasher import PasswordHasher
from auth.reset_tokens import ResetTokenManager
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credvault.api")

# ---------------------------------------------------------------------------
# Error kind -> HTTP status
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[type[CredentialError], int] = {
    Conflict: 409,
    Unauthorized: 401,
    InvalidOrExpiredToken: 401,
    Forbidden: 403,
    NotFound: 404,
    BadRequest: 400,
    HashingFailure: 500,
}


def status_for(exc: CredentialError) -> int:
    """Return the HTTP status for a CredentialError, walking its MRO."""
    for kind in type(exc).__mro__:
        if kind in _STATUS_BY_KIND:
            return _STATUS_BY_KIND[kind]
    return 500


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_credential_service(settings: Settings, store: UserStore) -> CredentialService:
    """Construct the orchestrator and its collaborators from settings.

    Duration strings are parsed here, once, via the Settings properties.

    Reset token delivery: debug mode logs tokens through the "credvault.mail"
    logger. Otherwise pass a mailer as on_reset_token; with none, reset
    tokens are stored but never delivered.
    """
    on_reset_token = log_reset_token if settings.debug else None
    if on_reset_token is None:
        logger.warning("No reset token delivery configured; password reset emails will not be sent")
    return CredentialService(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=TokenService(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_expires_seconds=settings.access_expires_seconds,
            refresh_expires_seconds=settings.refresh_expires_seconds,
        ),
        reset_tokens=ResetTokenManager(expires_seconds=settings.reset_expires_seconds),
        on_reset_token=on_reset_token,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The store is created first because the service depends on it.
    """
    settings = get_settings()
    logger.info("Credvault API starting up")
    app.state.user_store = UserStore(settings.database_url)
    logger.info("User store initialized")
    app.state.credential_service = build_credential_service(settings, app.state.user_store)
    logger.info(
        "Credential service initialized (access=%ds, refresh=%ds, reset=%ds, bcrypt_rounds=%d)",
        settings.access_expires_seconds,
        settings.refresh_expires_seconds,
        settings.reset_expires_seconds,
        settings.bcrypt_rounds,
    )

    yield

    app.state.user_store.close()
    logger.info("Credvault API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Credvault API",
    description="Registration, login, token refresh and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives per-response
# latency.
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(CredentialError)
async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
    """Map a credential failure kind to its status code.

    Internal kinds (HashingFailure) are rendered generically -- their message
    is logged, not returned.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Internal credential failure on %s %s: %s", request.method, request.url.path, exc.message)
        return _error_response(status_code, "internal_error", "An unexpected error occurred.")
    response = _error_response(status_code, exc.code, exc.message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back -- never the submitted
    values, which may be passwords.
    """
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error_response(422, "validation_error", "Request validation failed.", str(errors))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception (store or crypto library detail included) is written to
    the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database round-trip check."""
    components = {"app": "ok"}
    try:
        components["database"] = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
