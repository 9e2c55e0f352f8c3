"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer access tokens are the only authentication method: the
Authorization: Bearer <token> header is resolved through
CredentialService.current_user(), which verifies the token and re-reads the
user so a deleted account stops authenticating immediately.

get_current_user() raises Unauthorized if unauthenticated.
require_roles(*roles) wraps it with authorize() and raises Forbidden on deny.
Both are CredentialErrors; the app-level handler turns them into 401 / 403.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import UserProfile
from auth.permissions import authorize
from auth.service import CredentialService

logger = logging.getLogger("credvault.auth")


def get_credential_service(request: Request) -> CredentialService:
    """Return the CredentialService built once in the app lifespan."""
    return request.app.state.credential_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(
    request: Request,
    service: CredentialService = Depends(get_credential_service),
) -> UserProfile:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserProfile = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized("Authentication required.")
    return service.current_user(token)


def require_roles(*roles: str) -> Callable[..., UserProfile]:
    """Build a dependency that admits only users whose role is in roles.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(user: UserProfile = Depends(require_roles("ADMIN"))): ...
    """

    def dependency(user: UserProfile = Depends(get_current_user)) -> UserProfile:
        if not authorize(user.role, roles):
            logger.warning("Role check failed: user %s (%s) lacks one of %s", user.id, user.role, sorted(roles))
            raise Forbidden()
        return user

    return dependency
