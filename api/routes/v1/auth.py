"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; returns profile + tokens
  POST /api/v1/auth/login                   -- password login; returns profile + tokens
  POST /api/v1/auth/refresh                 -- refresh token -> new access token
  POST /api/v1/auth/request-password-reset  -- start reset; uniform response
  POST /api/v1/auth/reset-password          -- consume reset token, set password
  GET  /api/v1/auth/me                      -- current user profile (Bearer)

Security:
  - login and request-password-reset are rate-limited per IP.
  - Enumeration resistance lives in CredentialService -- handlers never
    look users up themselves.
  - Cache-Control: no-store on every response that carries a token.

Handlers are plain `def`: FastAPI runs them in its worker threadpool, so
bcrypt work and store I/O never block the event loop. CredentialErrors raised
by the service propagate to the app-level handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    PasswordResetRequest,
    PasswordResetRequestedResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserProfileResponse,
)
from auth.dependencies import get_credential_service, get_current_user
from auth.models import UserProfile
from auth.service import CredentialService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:               public
# - POST /api/v1/auth/login:                  public, rate-limited
# - POST /api/v1/auth/refresh:                public -- the refresh token is the credential
# - POST /api/v1/auth/request-password-reset: public, rate-limited
# - POST /api/v1/auth/reset-password:         public -- the reset token is the credential
# - GET  /api/v1/auth/me:                     requires auth (get_current_user)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _reset_limit() -> str:
    return get_settings().password_reset_rate_limit


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    service: CredentialService = Depends(get_credential_service),
) -> AuthResponse:
    """Create an unprivileged account and return its profile and tokens.

    409 if the email is already registered.
    """
    result = service.register(body.email, body.name, body.password)
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(_login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    service: CredentialService = Depends(get_credential_service),
) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password both return the same 401 body.
    """
    result = service.login(body.email, body.password)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(
    body: RefreshRequest,
    response: Response,
    service: CredentialService = Depends(get_credential_service),
) -> RefreshResponse:
    """Exchange a refresh token for a new access token. The refresh token is not reissued."""
    result = service.refresh(body.refresh_token)
    _no_store(response)
    return RefreshResponse(access_token=result.access_token, expires_in=result.expires_in)


@limiter.limit(_reset_limit)
@router.post("/auth/request-password-reset", response_model=PasswordResetRequestedResponse)
def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    service: CredentialService = Depends(get_credential_service),
) -> PasswordResetRequestedResponse:
    """Start a password reset. Always 200 with the same message."""
    result = service.request_password_reset(body.email)
    return PasswordResetRequestedResponse(message=result.message, expires_in=result.expires_in)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
) -> MessageResponse:
    """Set a new password using a reset token.

    404 for an unknown token, 400 for an expired one.
    """
    result = service.reset_password(body.token, body.new_password)
    return MessageResponse(message=result.message)


@router.get("/auth/me", response_model=UserProfileResponse)
def me(current_user: UserProfile = Depends(get_current_user)) -> UserProfileResponse:
    """Return the profile of the authenticated user."""
    return UserProfileResponse.from_profile(current_user)
