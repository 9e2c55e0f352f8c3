"""
API request and response models for Credvault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuthResult, UserPage, UserProfile

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is the mailer's problem, not the validator's.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores everything past 72 bytes of input.
PASSWORD_MAX_BYTES = 72

_PASSWORD_SPECIALS = "@$!%*?&"
_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a number"),
    (re.compile(f"[{re.escape(_PASSWORD_SPECIALS)}]"), f"a special character ({_PASSWORD_SPECIALS})"),
)


def _check_password_strength(value: str) -> str:
    """Require at least one lowercase, uppercase, digit and special character.

    Also caps the password at PASSWORD_MAX_BYTES of UTF-8: bcrypt reads no
    further, so two longer passwords sharing a prefix would hash alike.
    """
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValueError("Password must contain " + ", ".join(missing) + ".")
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded.")
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def split_csv(value: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated query value ("a,b") into terms, dropping blanks."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    email and name are trimmed. The password is taken exactly as sent, since
    login and reset compare it exactly as sent.
    """

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_BYTES)

    @field_validator("email", "name", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        return _strip(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No strength rule here -- a login attempt with a weak password must fail
    with the same 401 as any other bad credential, not a 422 that hints at
    the password policy.
    """

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/request-password-reset."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=PASSWORD_MAX_BYTES)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class CreateUserRequest(BaseModel):
    """Request body for POST /api/v1/users/admin. The role is chosen by the admin."""

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_BYTES)
    role: Literal["USER", "ADMIN"] = "USER"

    @field_validator("email", "name", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        return _strip(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class UpdateUserRequest(BaseModel):
    """Request body for PATCH /api/v1/users/admin/{user_id}. Omitted fields are unchanged."""

    email: Optional[str] = Field(default=None, max_length=320, pattern=EMAIL_PATTERN)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=PASSWORD_MAX_BYTES)
    role: Optional[Literal["USER", "ADMIN"]] = None

    @field_validator("email", "name", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        return _strip(value)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_strength(value) if value is not None else None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfileResponse(BaseModel):
    """Public profile. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserProfileResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            name=profile.name,
            role=profile.role,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class PageMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int


class UserListResponse(BaseModel):
    """Response for GET /api/v1/users: one page of profiles plus paging metadata."""

    model_config = ConfigDict(frozen=True)

    payload: list[UserProfileResponse]
    meta: PageMeta

    @classmethod
    def from_page(cls, page: UserPage) -> "UserListResponse":
        return cls(
            payload=[UserProfileResponse.from_profile(p) for p in page.items],
            meta=PageMeta(page=page.page, limit=page.limit, total=page.total, total_pages=page.total_pages),
        )


class AuthResponse(BaseModel):
    """Response for register and login: profile plus a fresh token pair.

    expires_in is the access token lifetime in seconds.
    """

    model_config = ConfigDict(frozen=True)

    user: UserProfileResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            user=UserProfileResponse.from_profile(result.profile),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            expires_in=result.tokens.expires_in,
        )


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105
    expires_in: int


class PasswordResetRequestedResponse(BaseModel):
    """Identical for registered and unregistered emails."""

    model_config = ConfigDict(frozen=True)

    message: str
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
