"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization gate.

Only one credential is accepted: an `Authorization: Bearer <access token>`
header. The token is verified by the TokenAuthority on app.state, then the
user is re-read from the store on every request. The token's embedded
role/status is never trusted as current, so a deactivation or role change
takes effect immediately rather than when the token expires.

optional_authenticate() is the soft variant (returns None on any failure).
authenticate() raises the specific AuthError (no_token, token_expired,
token_invalid, user_not_found, account_not_active) which the API layer
turns into a 401 envelope.
require_role(*roles) wraps authenticate() and raises ForbiddenError.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
Everything else in auth/ is framework-free.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AccountNotActiveError, AuthError, ForbiddenError, TokenMissingError, UserNotFoundError
from auth.models import AuditAction, AuditResource, ClientInfo, Role, User

_BEARER_PREFIX = "bearer "


def client_info(request: Request) -> ClientInfo:
    """Capture requester ip and user-agent for sessions and audit rows."""
    return ClientInfo(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def authenticate(request: Request) -> User:
    """Require a valid bearer token belonging to a live, ACTIVE user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(authenticate)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise TokenMissingError()

    claims = request.app.state.tokens.verify_access_token(token)
    user = request.app.state.store.find_user_by_id(claims["user_id"])
    if user is None:
        raise UserNotFoundError()
    if not user.is_active:
        raise AccountNotActiveError()
    return user


def optional_authenticate(request: Request) -> User | None:
    """Return the authenticated user, or None. Never raises an AuthError.

    For endpoints that behave differently for signed-in callers but are
    also open to anonymous ones.
    """
    try:
        return authenticate(request)
    except AuthError:
        return None


def require_role(*allowed: Role) -> Callable[[Request], User]:
    """Build a dependency that authenticates and then checks role membership.

    Denials are written to the audit log as ACCESS_DENIED.
    """
    allowed_roles = frozenset(allowed)

    def dependency(request: Request) -> User:
        user = authenticate(request)
        if user.role not in allowed_roles:
            request.app.state.audit.record(
                user.id,
                AuditAction.ACCESS_DENIED,
                AuditResource.USER,
                {"path": request.url.path, "method": request.method, "role": user.role.value},
                client_info(request),
            )
            raise ForbiddenError()
        return user

    return dependency


require_admin = require_role(Role.ADMIN, Role.SUPER_ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)
