"""
api/routes/v1/users.py -- Admin user management.

Routes (all ADMIN only):
  GET    /api/v1/users                  -- paginated, filtered list, newest first
  GET    /api/v1/users/{user_id}        -- public profile of any user
  POST   /api/v1/users/admin            -- create a user with an explicit role
  PATCH  /api/v1/users/admin/{user_id}  -- change email, name, role or password
  DELETE /api/v1/users/admin/{user_id}  -- delete a user (204)

List filters are comma-separated: ?name=ana,bob matches either substring,
case-insensitively. name, email and role filters combine with AND.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from api.models import CreateUserRequest, UpdateUserRequest, UserListResponse, UserProfileResponse, split_csv
from auth.dependencies import get_credential_service, require_roles
from auth.errors import BadRequest
from auth.models import ROLE_ADMIN, ROLES, UserFilters, UserProfile
from auth.service import CredentialService

router = APIRouter()

_admin_only = require_roles(ROLE_ADMIN)


@router.get("/users", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    name: Optional[str] = Query(None, max_length=500),
    email: Optional[str] = Query(None, max_length=500),
    role: Optional[str] = Query(None, max_length=100),
    current_user: UserProfile = Depends(_admin_only),
    service: CredentialService = Depends(get_credential_service),
) -> UserListResponse:
    """List users, optionally filtered by name, email and role."""
    roles = split_csv(role)
    unknown = sorted(set(roles) - ROLES)
    if unknown:
        raise BadRequest(f"Unknown role filter: {', '.join(unknown)}.")
    filters = UserFilters(names=split_csv(name), emails=split_csv(email), roles=roles)
    return UserListResponse.from_page(service.list_users(page, limit, filters))


@router.get("/users/{user_id}", response_model=UserProfileResponse)
def get_user(
    user_id: str,
    current_user: UserProfile = Depends(_admin_only),
    service: CredentialService = Depends(get_credential_service),
) -> UserProfileResponse:
    """Return a user's public profile. 404 if the id is unknown."""
    return UserProfileResponse.from_profile(service.get_profile(user_id))


@router.post("/users/admin", response_model=UserProfileResponse, status_code=201)
def create_user(
    body: CreateUserRequest,
    current_user: UserProfile = Depends(_admin_only),
    service: CredentialService = Depends(get_credential_service),
) -> UserProfileResponse:
    """Create a user. 409 if the email is taken. No tokens are returned."""
    profile = service.create_user(body.email, body.name, body.password, role=body.role)
    return UserProfileResponse.from_profile(profile)


@router.patch("/users/admin/{user_id}", response_model=UserProfileResponse)
def update_user(
    user_id: str,
    body: UpdateUserRequest,
    current_user: UserProfile = Depends(_admin_only),
    service: CredentialService = Depends(get_credential_service),
) -> UserProfileResponse:
    """Apply a partial update. 404 for an unknown id, 409 for an email in use."""
    profile = service.update_user(
        user_id,
        email=body.email,
        name=body.name,
        role=body.role,
        password=body.password,
    )
    return UserProfileResponse.from_profile(profile)


@router.delete("/users/admin/{user_id}", status_code=204)
def delete_user(
    user_id: str,
    current_user: UserProfile = Depends(_admin_only),
    service: CredentialService = Depends(get_credential_service),
) -> Response:
    service.delete_user(user_id)
    return Response(status_code=204)
