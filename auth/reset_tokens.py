"""
auth/reset_tokens.py -- Password-reset token generation.

secrets.token_hex(32) gives 32 random bytes as 64 hex characters, i.e. 256
bits of entropy -- guessing a live token is computationally infeasible. The
token is stored as-is (not hashed) because it is single-use and short-lived;
the store purges it on consumption or supersession.

generate_token() is pure apart from the clock and the random source: it does
not persist anything. CredentialService decides whether to hand the token to
the store (only when the email belongs to a user).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import GeneratedResetToken

_TOKEN_BYTES = 32


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ResetTokenManager:
    """Generate single-use, time-boxed reset tokens.

    Args:
        expires_seconds: Token validity window (default 1 hour).
        clock:           Zero-arg callable returning an aware UTC datetime.
                         Injected by tests to pin "now".
    """

    def __init__(self, expires_seconds: int = 3600, clock: Callable[[], datetime] = utc_now) -> None:
        self.expires_seconds = expires_seconds
        self._clock = clock

    def generate_token(self) -> GeneratedResetToken:
        return GeneratedResetToken(
            token=secrets.token_hex(_TOKEN_BYTES),
            expires_at=self._clock() + timedelta(seconds=self.expires_seconds),
            expires_in=self.expires_seconds,
        )
