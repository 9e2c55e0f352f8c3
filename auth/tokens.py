"""
auth/tokens.py -- JWT access/refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Every issuance produces two independently
       signed tokens from the same payload:
         access  -- signed with JWT_ACCESS_SECRET, short window (default 15m)
         refresh -- signed with JWT_REFRESH_SECRET, long window (default 7d)
       Distinct secrets mean a leaked access secret cannot forge refresh
       tokens and vice versa. The short access window bounds the blast radius
       of a stolen bearer token; the refresh token only ever goes to the
       refresh endpoint.

  "type" claim: each token also carries type=access|refresh. With distinct
       secrets a cross-use already fails signature verification; the claim
       keeps that true if an operator misconfigures both secrets identically.

  Verification: any failure -- bad signature, malformed token, expiry,
       missing claims, wrong type -- raises the single InvalidOrExpiredToken.
       The reason is deliberately not distinguished, so a caller cannot tell
       a well-formed-but-expired token from a forged one.

Layer rule: no imports from api/. Import from core/ is not needed here --
windows arrive as integer seconds, already parsed by core.config.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidOrExpiredToken
from auth.models import IssuedTokenPair, TokenPayload

logger = logging.getLogger("credvault.auth")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"  # noqa: S105 # nosec B105 -- claim value, not a password

_REQUIRED_CLAIMS = ("sub", "email", "role", "type")


class TokenService:
    """Mint and validate signed access/refresh tokens.

    Stateless after construction: safe to share across threads and requests
    without synchronization.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_expires_seconds: int,
        refresh_expires_seconds: int,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_expires_seconds = access_expires_seconds
        self.refresh_expires_seconds = refresh_expires_seconds

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def generate_tokens(self, payload: TokenPayload) -> IssuedTokenPair:
        """Issue an access/refresh pair for payload.

        expires_in on the result reports the access window only.
        """
        access_token = self._encode(payload, ACCESS_TOKEN_TYPE, self._access_secret, self.access_expires_seconds)
        refresh_token = self._encode(payload, REFRESH_TOKEN_TYPE, self._refresh_secret, self.refresh_expires_seconds)
        return IssuedTokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_expires_seconds,
        )

    def _encode(self, payload: TokenPayload, token_type: str, secret: str, expire_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": payload.subject,
            "email": payload.email,
            "role": payload.role,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=expire_seconds),
        }
        return jwt.encode(claims, secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_refresh_token(self, token: str) -> TokenPayload:
        """Return the payload of a valid refresh token or raise InvalidOrExpiredToken."""
        return self._decode(token, self._refresh_secret, REFRESH_TOKEN_TYPE)

    def verify_access_token(self, token: str) -> TokenPayload:
        """Return the payload of a valid access token or raise InvalidOrExpiredToken."""
        return self._decode(token, self._access_secret, ACCESS_TOKEN_TYPE)

    def _decode(self, token: str, secret: str, expected_type: str) -> TokenPayload:
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("%s token rejected: %s", expected_type, type(exc).__name__)
            raise InvalidOrExpiredToken() from None
        if any(not isinstance(claims.get(name), str) for name in _REQUIRED_CLAIMS):
            raise InvalidOrExpiredToken()
        if claims["type"] != expected_type:
            raise InvalidOrExpiredToken()
        return TokenPayload(subject=claims["sub"], email=claims["email"], role=claims["role"])
