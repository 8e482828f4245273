"""
api/routes/v1/users.py -- Self-service account routes and administrative user management.

Routes (self-service, any authenticated ACTIVE user):
  GET    /api/v1/users/me                         -- own profile
  PUT    /api/v1/users/me                         -- update profile fields
  PUT    /api/v1/users/me/password                -- change password; revokes every session
  GET    /api/v1/users/me/sessions                -- list active sessions
  DELETE /api/v1/users/me/sessions                -- revoke every session
  DELETE /api/v1/users/me/sessions/{session_id}   -- revoke one session (ownership checked)

Routes (administration):
  GET    /api/v1/users                   -- paginated, filterable list (admin)
  GET    /api/v1/users/stats/overview    -- account counters (admin)
  POST   /api/v1/users/admin             -- create an elevated account (super admin)
  GET    /api/v1/users/{user_id}         -- one user (admin)
  PUT    /api/v1/users/{user_id}/role    -- change role (admin)
  PUT    /api/v1/users/{user_id}/status  -- change status (admin)
  DELETE /api/v1/users/{user_id}         -- hard delete (super admin)

Fixed paths (/users/me, /users/stats/overview, /users/admin) are registered
before /users/{user_id} so they never get captured as an id.
"""

from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import (
    AdminCreateRequest,
    Pagination,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    RoleUpdateRequest,
    SessionOut,
    StatusUpdateRequest,
    UserListPayload,
    UserOut,
    UserStatsOut,
    success_response,
)
from auth.admin import UserAdministration
from auth.dependencies import authenticate, client_info, require_admin, require_super_admin
from auth.models import Role, User, UserStatus
from auth.service import AccountService

router = APIRouter()


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.get("/users/me")
def get_me(user: User = Depends(authenticate)) -> JSONResponse:
    return success_response({"user": UserOut.from_domain(user)})


@router.put("/users/me")
def update_me(request: Request, body: ProfileUpdateRequest, user: User = Depends(authenticate)) -> JSONResponse:
    """Update profile fields. Only fields present in the body are touched."""
    accounts: AccountService = request.app.state.accounts
    updated = accounts.update_profile(user, body.model_dump(exclude_unset=True), client_info(request))
    return success_response({"user": UserOut.from_domain(updated)}, message="Profile updated successfully.")


@router.put("/users/me/password")
def change_password(
    request: Request, body: PasswordChangeRequest, user: User = Depends(authenticate)
) -> JSONResponse:
    """Change the password. Every refresh session is revoked, so the caller must log in again."""
    accounts: AccountService = request.app.state.accounts
    revoked = accounts.change_password(user, body.current_password, body.new_password, client_info(request))
    return success_response(
        {"sessions_revoked": revoked},
        message="Password changed successfully. Please log in again.",
    )


@router.get("/users/me/sessions")
def list_my_sessions(request: Request, user: User = Depends(authenticate)) -> JSONResponse:
    accounts: AccountService = request.app.state.accounts
    sessions = [SessionOut.from_domain(s) for s in accounts.list_sessions(user)]
    return success_response({"sessions": sessions})


@router.delete("/users/me/sessions")
def revoke_my_sessions(request: Request, user: User = Depends(authenticate)) -> JSONResponse:
    accounts: AccountService = request.app.state.accounts
    revoked = accounts.revoke_all_sessions(user, client_info(request))
    return success_response({"sessions_revoked": revoked}, message="All sessions revoked.")


@router.delete("/users/me/sessions/{session_id}")
def revoke_my_session(request: Request, session_id: str, user: User = Depends(authenticate)) -> JSONResponse:
    """Revoke one session. Another user's session id answers 404, same as an unknown one."""
    accounts: AccountService = request.app.state.accounts
    accounts.revoke_session(user, session_id, client_info(request))
    return success_response(message="Session revoked.")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users")
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    role: Optional[Role] = Query(None),
    status: Optional[UserStatus] = Query(None),
    _admin: User = Depends(require_admin),
) -> JSONResponse:
    """Paginated user list. `search` matches email, first name or last name."""
    admin: UserAdministration = request.app.state.admin
    users, total = admin.list_users(page=page, limit=limit, search=search, role=role, status=status)
    payload = UserListPayload(
        users=[UserOut.from_domain(u) for u in users],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
    return success_response(payload)


@router.get("/users/stats/overview")
def user_stats(request: Request, _admin: User = Depends(require_admin)) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    return success_response({"stats": UserStatsOut(**admin.stats())})


@router.post("/users/admin", status_code=201)
def create_admin(
    request: Request, body: AdminCreateRequest, actor: User = Depends(require_super_admin)
) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    created = admin.create_admin(
        actor, body.email, body.password, client_info(request), role=body.role, **body.profile()
    )
    return success_response(
        {"user": UserOut.from_domain(created)},
        message="Admin user created successfully.",
        status_code=201,
    )


@router.get("/users/{user_id}")
def get_user(request: Request, user_id: str, _admin: User = Depends(require_admin)) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    return success_response({"user": UserOut.from_domain(admin.get_user(user_id))})


@router.put("/users/{user_id}/role")
def change_role(
    request: Request, user_id: str, body: RoleUpdateRequest, actor: User = Depends(require_admin)
) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    updated = admin.change_role(actor, user_id, body.role, client_info(request))
    return success_response({"user": UserOut.from_domain(updated)}, message="User role updated successfully.")


@router.put("/users/{user_id}/status")
def change_status(
    request: Request, user_id: str, body: StatusUpdateRequest, actor: User = Depends(require_admin)
) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    updated = admin.change_status(actor, user_id, body.status, client_info(request))
    return success_response({"user": UserOut.from_domain(updated)}, message="User status updated successfully.")


@router.delete("/users/{user_id}")
def delete_user(request: Request, user_id: str, actor: User = Depends(require_super_admin)) -> JSONResponse:
    """Hard delete. The user's sessions and audit rows are removed with it."""
    admin: UserAdministration = request.app.state.admin
    admin.delete_user(actor, user_id, client_info(request))
    return success_response(message="User deleted successfully.")
