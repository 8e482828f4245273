"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, token authority and services do the work.

Role and status are closed str-Enums. Every decision point compares enum
members, never raw strings, so a typo is an AttributeError at import time
rather than a silently-false comparison at request time.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


# Roles that may only be granted, revoked, suspended or deleted by a SUPER_ADMIN.
ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class AuditAction(str, Enum):
    USER_REGISTER = "USER_REGISTER"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    USER_LOGOUT = "USER_LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    REFRESH_TOKEN_REUSE = "REFRESH_TOKEN_REUSE"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    SESSION_REVOKED = "SESSION_REVOKED"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"
    ROLE_CHANGED = "ROLE_CHANGED"
    USER_ACTIVATED = "USER_ACTIVATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_DELETED = "USER_DELETED"
    ADMIN_CREATED = "ADMIN_CREATED"
    ACCESS_DENIED = "ACCESS_DENIED"


class AuditResource(str, Enum):
    USER = "USER"
    SESSION = "SESSION"
    AUDIT_LOG = "AUDIT_LOG"


@dataclass
class User:
    """A registered identity.

    email is always stored lowercase; uniqueness is enforced by the store.
    password_hash is the bcrypt hash and never leaves the auth layer --
    the API maps users through UserOut, which has no such field.

    failed_login_attempts / locked_until are the lockout pair. They are only
    mutated through AuthStore.record_login_failure() and
    reset_login_failures(), both single atomic UPDATEs.
    """

    email: str
    password_hash: str
    role: Role = Role.USER
    status: UserStatus = UserStatus.ACTIVE
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    website: str | None = None
    bio: str | None = None
    email_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is UserStatus.ACTIVE


@dataclass
class Session:
    """The persisted record backing one live refresh token.

    token_hash is HMAC-SHA256(refresh secret, raw token). The raw refresh
    token is returned to the client once and never stored.

    rotated_at marks a row retired by refresh-token rotation. Such a row no
    longer backs a live session; it stays until expiry so a replay of the
    retired token can be recognised.
    """

    user_id: str
    token_hash: str
    expires_at: datetime
    id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    rotated_at: datetime | None = None


@dataclass
class AuditLog:
    """One append-only security event. user_id is None for anonymous events."""

    action: AuditAction
    resource: AuditResource
    user_id: str | None = None
    details: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ClientInfo:
    """Requester metadata captured on sessions and audit rows."""

    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User
    rotated: bool = False
