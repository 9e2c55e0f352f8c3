"""
auth/service.py -- Credential orchestrator: register, login, refresh, reset, admin.

CredentialService composes the password hasher, the token service, the reset
token manager and a CredentialStore. It owns every invariant and the error
taxonomy of the credential core; collaborators are injected once at startup.

Password-reset state machine, per user:

    NoActiveToken --request--> Pending(token, expires_at)
    Pending       --request--> Pending(new token)      (old one Superseded)
    Pending       --reset----> Consumed                (all tokens purged)

Security:
  - login() runs exactly one bcrypt comparison whether or not the email is
    registered, and both failure paths raise the same Unauthorized message.
  - refresh() re-reads the user and mints from the live record, so role or
    email changes since the refresh token was issued take effect. A deleted
    user yields the generic Unauthorized, not NotFound.
  - request_password_reset() always generates a token and always returns
    the same message, registered email or not. Only the persisted token is
    verifiable, and it is never part of the response -- delivery happens
    out of band through the on_reset_token hook. A failing hook is logged,
    not raised, so a mailer outage cannot reveal which emails exist.

Layer rule: no imports from api/ or core/. All calls are synchronous; the
transport runs them in a worker threadpool so bcrypt never stalls the event
loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from auth.errors import BadRequest, Conflict, InvalidOrExpiredToken, NotFound, Unauthorized
from auth.hasher import PasswordHasher
from auth.models import (
    DEFAULT_ROLE,
    AuthResult,
    GeneratedResetToken,
    PasswordResetCompleted,
    PasswordResetRequested,
    RefreshResult,
    TokenPayload,
    UserFilters,
    UserPage,
    UserProfile,
    UserRecord,
)
from auth.reset_tokens import ResetTokenManager, utc_now
from auth.store import CredentialStore, DuplicateEmailError, normalize_email
from auth.tokens import TokenService

logger = logging.getLogger("credvault.auth")

INVALID_CREDENTIALS = "Invalid credentials."
INVALID_REFRESH_TOKEN = "Refresh token is invalid or expired."  # noqa: S105 # nosec B105
INVALID_ACCESS_TOKEN = "Access token is invalid or expired."  # noqa: S105 # nosec B105
PASSWORD_RESET_REQUESTED = "If the email is registered, password reset instructions will be sent."
PASSWORD_RESET_COMPLETED = "Password updated successfully."
INVALID_RESET_TOKEN = "Reset token is invalid."  # noqa: S105 # nosec B105
USER_NOT_FOUND = "User not found."
EMAIL_IN_USE = "Email is already in use."

ResetTokenHook = Callable[[UserRecord, GeneratedResetToken], None]


class CredentialService:
    """Coordinates the credential and token lifecycle flows.

    Args:
        store:          CredentialStore implementation (UserStore in production).
        hasher:         PasswordHasher configured with the deployment cost factor.
        tokens:         TokenService holding both signing secrets.
        reset_tokens:   ResetTokenManager holding the reset window.
        on_reset_token: Optional delivery hook, called with the owner and the
                        generated token after it is persisted. Wire a mailer
                        here. Never called for unknown emails.
        clock:          Zero-arg callable returning aware UTC "now"; used for
                        reset token expiry checks.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        reset_tokens: ResetTokenManager,
        on_reset_token: ResetTokenHook | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.reset_tokens = reset_tokens
        self.on_reset_token = on_reset_token
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, name: str, password: str) -> AuthResult:
        """Create an unprivileged account and log it in.

        Raises Conflict if the email is already registered.
        """
        if self.store.find_by_email(email) is not None:
            raise Conflict()
        password_hash = self.hasher.hash(password)
        try:
            user = self.store.create(email=email, name=name, password_hash=password_hash, role=DEFAULT_ROLE)
        except DuplicateEmailError:
            # Lost a race with a concurrent registration for the same email.
            raise Conflict() from None
        logger.info("User registered: %s", user.id)
        return self._issue(user)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        Do NOT short-circuit before the bcrypt call on an unknown email --
        that re-introduces the timing side channel.
        """
        user = self.store.find_by_email(email)
        if user is None:
            self.hasher.equalize_timing(password)
            logger.info("Login failed: unknown account")
            raise Unauthorized(INVALID_CREDENTIALS)
        if not self.hasher.compare(password, user.password_hash):
            logger.info("Login failed: bad password for user %s", user.id)
            raise Unauthorized(INVALID_CREDENTIALS)
        return self._issue(user)

    # ------------------------------------------------------------------
    # Token refresh and identity
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Exchange a refresh token for a new access token.

        The response carries only the access token. The caller keeps using
        the refresh token it already holds until that expires.
        """
        try:
            payload = self.tokens.verify_refresh_token(refresh_token)
        except InvalidOrExpiredToken:
            raise Unauthorized(INVALID_REFRESH_TOKEN) from None
        user = self.store.find_by_id(payload.subject)
        if user is None:
            logger.info("Refresh rejected: subject %s no longer exists", payload.subject)
            raise Unauthorized(INVALID_REFRESH_TOKEN)
        pair = self.tokens.generate_tokens(TokenPayload.from_record(user))
        return RefreshResult(access_token=pair.access_token, expires_in=pair.expires_in)

    def current_user(self, access_token: str) -> UserProfile:
        """Resolve a bearer access token to the live user's profile."""
        try:
            payload = self.tokens.verify_access_token(access_token)
        except InvalidOrExpiredToken:
            raise Unauthorized(INVALID_ACCESS_TOKEN) from None
        user = self.store.find_by_id(payload.subject)
        if user is None:
            raise Unauthorized(INVALID_ACCESS_TOKEN)
        return UserProfile.from_record(user)

    def get_profile(self, user_id: str) -> UserProfile:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFound(USER_NOT_FOUND)
        return UserProfile.from_record(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> PasswordResetRequested:
        """Start a password reset for email, if it is registered.

        The token is generated before the existence check so both branches do
        the same work and return the same response.
        """
        generated = self.reset_tokens.generate_token()
        user = self.store.find_by_email(email)
        if user is not None:
            self.store.create_reset_token(user.id, generated.token, generated.expires_at)
            logger.info("Password reset requested for user %s", user.id)
            if self.on_reset_token is not None:
                try:
                    self.on_reset_token(user, generated)
                except Exception:
                    # A delivery failure must look the same as an unknown email.
                    logger.exception("Reset token delivery failed for user %s", user.id)
        return PasswordResetRequested(message=PASSWORD_RESET_REQUESTED, expires_in=generated.expires_in)

    def reset_password(self, token: str, new_password: str) -> PasswordResetCompleted:
        """Consume a reset token and set a new password.

        Raises NotFound for an unknown token and BadRequest for an expired
        one. An expired token is left in place; the next reset request or a
        successful reset purges it.

        The token is spent conditionally after hashing: if a new reset request
        superseded it, or another confirm spent it, while bcrypt was running,
        this raises NotFound and the password is left alone.
        """
        found = self.store.find_reset_token(token)
        if found is None:
            raise NotFound(INVALID_RESET_TOKEN)
        user, reset_token = found
        if reset_token.expires_at < self._clock():
            logger.info("Expired reset token presented for user %s", user.id)
            raise BadRequest("Reset token has expired.")
        password_hash = self.hasher.hash(new_password)
        if not self.store.consume_reset_token(token, user.id, password_hash):
            logger.info("Reset token for user %s was spent or superseded mid-reset", user.id)
            raise NotFound(INVALID_RESET_TOKEN)
        logger.info("Password reset completed for user %s", user.id)
        return PasswordResetCompleted(message=PASSWORD_RESET_COMPLETED)

    # ------------------------------------------------------------------
    # User administration (ADMIN-only at the transport)
    # ------------------------------------------------------------------

    def list_users(self, page: int, limit: int, filters: UserFilters | None = None) -> UserPage:
        """Return one page of profiles, newest first, plus the filtered total."""
        records = self.store.list_users(page, limit, filters)
        total = self.store.count_users(filters)
        logger.debug("Listed %d of %d users (page=%d, limit=%d)", len(records), total, page, limit)
        return UserPage(
            items=[UserProfile.from_record(r) for r in records],
            page=page,
            limit=limit,
            total=total,
        )

    def create_user(self, email: str, name: str, password: str, role: str = DEFAULT_ROLE) -> UserProfile:
        """Create an account with an explicit role. No tokens are issued.

        Raises Conflict if the email is already registered.
        """
        if self.store.find_by_email(email) is not None:
            raise Conflict(EMAIL_IN_USE)
        password_hash = self.hasher.hash(password)
        try:
            user = self.store.create(email=email, name=name, password_hash=password_hash, role=role)
        except DuplicateEmailError:
            raise Conflict(EMAIL_IN_USE) from None
        logger.info("User created by admin: %s (%s)", user.id, user.role)
        return UserProfile.from_record(user)

    def update_user(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
        role: str | None = None,
        password: str | None = None,
    ) -> UserProfile:
        """Change any of email, name, role and password for an existing user.

        Raises NotFound for an unknown id. Raises Conflict when the new email
        equals the current one or belongs to another account. A password
        change also invalidates any pending reset token.
        """
        existing = self.store.find_by_id(user_id)
        if existing is None:
            raise NotFound(USER_NOT_FOUND)
        if email is not None:
            if normalize_email(email) == existing.email:
                raise Conflict(EMAIL_IN_USE)
            if self.store.find_by_email(email) is not None:
                raise Conflict(EMAIL_IN_USE)
        password_hash = self.hasher.hash(password) if password is not None else None
        try:
            updated = self.store.update_user(
                user_id, email=email, name=name, role=role, password_hash=password_hash
            )
        except DuplicateEmailError:
            raise Conflict(EMAIL_IN_USE) from None
        if updated is None:
            raise NotFound(USER_NOT_FOUND)
        logger.info("User updated: %s", user_id)
        return UserProfile.from_record(updated)

    def delete_user(self, user_id: str) -> None:
        """Delete an account and its reset tokens. Raises NotFound for an unknown id."""
        if not self.store.delete_user(user_id):
            raise NotFound(USER_NOT_FOUND)
        logger.info("User deleted: %s", user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: UserRecord) -> AuthResult:
        tokens = self.tokens.generate_tokens(TokenPayload.from_record(user))
        return AuthResult(profile=UserProfile.from_record(user), tokens=tokens)
