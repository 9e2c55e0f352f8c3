"""
auth/permissions.py -- Role-based authorization check.

A plain function instead of route decorators carrying role metadata: the
caller passes the principal's role and the set of roles an operation
accepts, and gets allow/deny back. No request context, no globals.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable


def authorize(role: str | None, required_roles: Iterable[str] | None) -> bool:
    """Return True if role satisfies required_roles.

    An empty or missing requirement allows everyone. A missing role (no
    authenticated principal) is denied whenever any role is required.
    """
    required = frozenset(required_roles or ())
    if not required:
        return True
    if role is None:
        return False
    return role in required
