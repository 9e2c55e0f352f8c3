"""
auth/errors.py -- Failure kinds raised by the credential core.

Every operation of CredentialService raises exactly one of these (or lets an
unexpected infrastructure error propagate untouched for the catch-all 500
handler). The transport layer maps kinds to protocol responses; the core's
contract is the kind, not the wire format.

Message policy:
  Unauthorized messages are generic on purpose -- "no such user", "wrong
  password" and "account deleted since the token was issued" must read the
  same to the caller (enumeration resistance).
  Conflict / NotFound / BadRequest may be specific: they only echo back what
  the requester already asserted (their own email, a token they hold).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class CredentialError(Exception):
    """Base class for every failure kind the credential core raises."""

    code: str = "credential_error"
    default_message: str = "Credential operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Conflict(CredentialError):
    code = "conflict"
    default_message = "Email is already registered."


class Unauthorized(CredentialError):
    code = "unauthorized"
    default_message = "Invalid credentials."


class Forbidden(CredentialError):
    code = "forbidden"
    default_message = "Insufficient role for this operation."


class NotFound(CredentialError):
    code = "not_found"
    default_message = "Resource not found."


class BadRequest(CredentialError):
    code = "bad_request"
    default_message = "Invalid request."


class HashingFailure(CredentialError):
    """bcrypt could not complete. Internal -- never rendered with detail."""

    code = "internal_error"
    default_message = "Password hashing failed."


class InvalidOrExpiredToken(CredentialError):
    """Token-layer failure. The orchestrator converts it to Unauthorized.

    Bad signature, malformed input and expiry all raise this same type so the
    reason cannot leak through to the caller.
    """

    code = "invalid_token"
    default_message = "Token is invalid or expired."
