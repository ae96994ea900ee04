"""
api/routes/v1/users.py -- User administration endpoints (admin only).

Routes:
  GET    /api/v1/users                     -- paginated list with filters
  PATCH  /api/v1/users/{id}/toggle-status  -- flip is_active
  PATCH  /api/v1/users/{id}/role           -- change role
  DELETE /api/v1/users/{id}                -- hard delete

Security:
  Every route depends on require_admin (401 unauthenticated, 403 non-admin).
  [M4] Admins cannot deactivate, demote or delete themselves, and the last
       active admin cannot be removed (enforced in CredentialStore).
  Deactivation revokes the target's sessions; any access token it still holds
  is refused by the gate on its next request.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import Pagination, RoleUpdate, UserListResult, UserResponse
from api.responses import success_response
from auth.credentials import CredentialStore
from auth.dependencies import require_admin
from auth.models import Role, User
from core.errors import ValidationError

router = APIRouter()


def _credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def _refuse_self(target_id: int, current_user: User, action: str) -> None:
    if target_id == current_user.id:
        raise ValidationError(f"You cannot {action} your own account.")


@router.get("/users")
async def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    role: Optional[Role] = None,
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    search: Optional[str] = Query(default=None, max_length=100),
    current_user: User = Depends(require_admin),
) -> JSONResponse:
    """List accounts, newest first. Filters: role, isActive, free-text search."""
    users, total = await _credentials(request).list_users(
        page, limit, role=role, is_active=is_active, search=search
    )
    result = UserListResult(
        users=[UserResponse.from_user(u) for u in users],
        pagination=Pagination.build(page, limit, total),
    )
    return success_response(result, "Users retrieved successfully")


@router.patch("/users/{user_id}/toggle-status")
async def toggle_status(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> JSONResponse:
    _refuse_self(user_id, current_user, "deactivate")
    user = await _credentials(request).toggle_status(user_id)
    return success_response(UserResponse.from_user(user), "User status updated successfully")


@router.patch("/users/{user_id}/role")
async def update_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_admin),
) -> JSONResponse:
    if body.role != Role.ADMIN:
        _refuse_self(user_id, current_user, "demote")
    user = await _credentials(request).set_role(user_id, body.role)
    return success_response(UserResponse.from_user(user), "User role updated successfully")


@router.delete("/users/{user_id}")
async def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> JSONResponse:
    _refuse_self(user_id, current_user, "delete")
    user = await _credentials(request).delete_user(user_id)
    return success_response(UserResponse.from_user(user), "User deleted successfully")
