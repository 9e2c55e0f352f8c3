"""
auth/delivery.py -- Out-of-band delivery sinks for password reset tokens.

A sink is any callable matching ResetTokenHook: it receives the owning
UserRecord and the freshly persisted GeneratedResetToken. CredentialService
calls it once per successful reset request for a registered email, and never
for unknown emails.

log_reset_token() writes the token to the "credvault.mail" logger. It is wired
only in debug mode, where it stands in for a mailer during local development.
Production deployments pass their own mailer as on_reset_token when building
the service (see build_credential_service in api/main.py); without one, reset
tokens are persisted but never leave the process.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.models import GeneratedResetToken, UserRecord

logger = logging.getLogger("credvault.mail")


def log_reset_token(user: UserRecord, generated: GeneratedResetToken) -> None:
    """Log the reset token for user instead of emailing it. Debug only."""
    logger.warning(
        "Password reset token for %s (user %s): %s (expires %s)",
        user.email,
        user.id,
        generated.token,
        generated.expires_at.isoformat(),
    )
