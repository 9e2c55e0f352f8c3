"""
auth/models.py -- Domain dataclasses for credential entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, token service and orchestrator do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLES = frozenset({ROLE_USER, ROLE_ADMIN})

# Role assigned to every self-registered account.
DEFAULT_ROLE = ROLE_USER


@dataclass
class UserRecord:
    """A registered principal as stored by the user store.

    password_hash is an opaque bcrypt string. It never leaves the auth package:
    anything handed to the transport layer goes through UserProfile.
    """

    id: str
    email: str
    name: str
    password_hash: str
    role: str  # "USER" or "ADMIN"
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserProfile:
    """Public view of a UserRecord -- everything except the password hash."""

    id: str
    email: str
    name: str
    role: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: UserRecord) -> UserProfile:
        return cls(
            id=record.id,
            email=record.email,
            name=record.name,
            role=record.role,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


@dataclass(frozen=True)
class TokenPayload:
    """Claims embedded in access and refresh tokens.

    Built fresh from the live UserRecord on every issuance, never cached.
    """

    subject: str  # UserRecord.id, carried as the JWT "sub" claim
    email: str
    role: str

    @classmethod
    def from_record(cls, record: UserRecord) -> TokenPayload:
        return cls(subject=record.id, email=record.email, role=record.role)


@dataclass(frozen=True)
class IssuedTokenPair:
    """Access + refresh token minted from one payload.

    expires_in is the access token window only.
    """

    access_token: str
    refresh_token: str
    expires_in: int


@dataclass
class ResetToken:
    """A persisted password-reset token. At most one per user."""

    token: str
    user_id: str
    expires_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class GeneratedResetToken:
    """A freshly generated, not yet persisted, reset token."""

    token: str
    expires_at: datetime
    expires_in: int


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthResult:
    """Returned by register and login."""

    profile: UserProfile
    tokens: IssuedTokenPair


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int


@dataclass(frozen=True)
class PasswordResetRequested:
    message: str
    expires_in: int


@dataclass(frozen=True)
class PasswordResetCompleted:
    message: str


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserFilters:
    """Optional list filters. Empty tuples mean "no filter on this field"."""

    names: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class UserPage:
    """One page of users plus the total matching the filters."""

    items: list[UserProfile]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0
