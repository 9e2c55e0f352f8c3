"""
auth/hasher.py -- bcrypt password hashing.

Bcrypt is the right choice for low-entropy secrets (passwords) because its
cost factor makes brute-force expensive. The cost factor is deployment
configuration (BCRYPT_ROUNDS), not a per-call argument. Each hash embeds the
cost it was made with, so raising the cost later does not invalidate any
stored hash -- checkpw reads the parameters back out of the hash.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug self-test
trips the 72-byte limit that bcrypt 4.x+ enforces, and direct usage has no
compatibility shim to maintain.

72-byte limit: bcrypt only ever looked at the first 72 bytes of input. Newer
releases raise instead of truncating, so we truncate explicitly in one place
to keep hash() and compare() consistent across bcrypt versions. The API rejects
passwords over 72 UTF-8 bytes before they get here (api/models.py), so the
truncation only matters for other callers such as the CLI.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import HashingFailure

logger = logging.getLogger("credvault.auth")

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """One-way password hashing with a fixed, configurable work factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("s3cret")
        hasher.compare("s3cret", stored)   # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash.
        # Computed once at construction so the first login against an unknown
        # email is not measurably faster than a wrong-password login.
        self._dummy_hash = self.hash("credvault_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Raises HashingFailure if bcrypt fails."""
        try:
            hashed = bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds))
        except (ValueError, TypeError) as exc:
            logger.error("bcrypt hashing failed: %s", type(exc).__name__)
            raise HashingFailure() from exc
        return hashed.decode("utf-8")

    def compare(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes compare False."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def equalize_timing(self, plain: str) -> None:
        """Burn one bcrypt comparison against the dummy hash.

        Called when a login names an unknown email, so that path costs the
        same as a wrong-password check and response time does not reveal
        which emails are registered.
        """
        self.compare(plain, self._dummy_hash)
