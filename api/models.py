"""
API request and response models for Keyward REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models are the request validator: a route only ever hands the auth
core normalized, type-coerced input (lowercased email, empty strings turned
into None, enums instead of strings). Password *strength* is not checked
here -- auth/passwords.check_strength() returns the full violation list.

Every response, success or failure, uses the same envelope:
    {"success": bool, "message"?: str, "code"?: str, "data"?: any, "errors"?: [...]}
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuditAction, AuditLog, RefreshResult, Role, Session, TokenPair, User, UserStatus
from core.clock import to_iso

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[1-9]\d{0,15}$"
WEBSITE_PATTERN = r"^https?://\S+$"


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: Optional[str] = None
    message: str


class ApiResponse(BaseModel):
    """Uniform response envelope (documentation model for OpenAPI)."""

    success: bool
    message: Optional[str] = None
    code: Optional[str] = None
    data: Optional[Any] = None
    errors: Optional[list[FieldError]] = None


def success_response(
    data: Any = None,
    message: str | None = None,
    status_code: int = 200,
    no_store: bool = False,
) -> JSONResponse:
    """Wrap `data` in a success envelope.

    no_store=True adds Cache-Control: no-store; use it on every
    response that carries a token.
    """
    content: dict[str, Any] = {"success": True}
    if message is not None:
        content["message"] = message
    if data is not None:
        content["data"] = jsonable_encoder(data)
    resp = JSONResponse(status_code=status_code, content=content)
    if no_store:
        resp.headers["Cache-Control"] = "no-store"
    return resp


def error_response(
    status_code: int,
    code: str,
    message: str,
    errors: list[dict] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "code": code, "message": message}
    if errors:
        content["errors"] = [FieldError(**e).model_dump(exclude_none=True) for e in errors]
    return JSONResponse(status_code=status_code, content=content)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailField(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        """Lowercase before the pattern check so uniqueness is case-insensitive."""
        return value.strip().lower() if isinstance(value, str) else value


class _ProfileFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    website: Optional[str] = Field(default=None, max_length=255, pattern=WEBSITE_PATTERN)

    @field_validator("first_name", "last_name", "company", "phone", "website", "bio", mode="before", check_fields=False)
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        """Treat "" as "not provided" so optional patterns do not reject it."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def profile(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump(include=set(_ProfileFields.model_fields)).items() if v is not None}


class RegisterRequest(_EmailField, _ProfileFields):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    password: str = Field(min_length=1, max_length=1024)


class AdminCreateRequest(RegisterRequest):
    """Request body for POST /api/v1/users/admin."""

    role: Role = Role.ADMIN


class LoginRequest(_EmailField):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=1024)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout.

    all_sessions only takes effect for a caller with a valid bearer token.
    """

    refresh_token: Optional[str] = None
    all_sessions: bool = False


class ProfileUpdateRequest(_ProfileFields):
    """Request body for PUT /api/v1/users/me. Unknown fields (role, status, email) are rejected."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    bio: Optional[str] = Field(default=None, max_length=500)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=1, max_length=1024)


class RoleUpdateRequest(BaseModel):
    role: Role


class StatusUpdateRequest(BaseModel):
    status: UserStatus


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. Never includes the password hash or lockout counters."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    company: Optional[str]
    phone: Optional[str]
    website: Optional[str]
    bio: Optional[str]
    role: Role
    status: UserStatus
    email_verified: bool
    created_at: Optional[str]
    updated_at: Optional[str]
    last_login_at: Optional[str]

    @classmethod
    def from_domain(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            company=user.company,
            phone=user.phone,
            website=user.website,
            bio=user.bio,
            role=user.role,
            status=user.status,
            email_verified=user.email_verified,
            created_at=to_iso(user.created_at),
            updated_at=to_iso(user.updated_at),
            last_login_at=to_iso(user.last_login_at),
        )


class TokensOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokensOut":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class AuthPayload(BaseModel):
    """data for register and login responses."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    tokens: TokensOut

    @classmethod
    def build(cls, user: User, pair: TokenPair) -> "AuthPayload":
        return cls(user=UserOut.from_domain(user), tokens=TokensOut.from_pair(pair))


class RefreshPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int
    user: UserOut

    @classmethod
    def from_result(cls, result: RefreshResult) -> "RefreshPayload":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
            user=UserOut.from_domain(result.user),
        )


class SessionOut(BaseModel):
    """One active session. The refresh token itself is never returned."""

    model_config = ConfigDict(frozen=True)

    id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]
    expires_at: str
    last_used_at: Optional[str]

    @classmethod
    def from_domain(cls, session: Session) -> "SessionOut":
        return cls(
            id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=to_iso(session.created_at),
            expires_at=to_iso(session.expires_at),
            last_used_at=to_iso(session.last_used_at),
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class UserListPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserOut]
    pagination: Pagination


class UserStatsOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    inactive_users: int
    admin_users: int
    regular_users: int
    recent_registrations: int


class AuditLogOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[str]
    action: AuditAction
    resource: str
    details: dict
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_domain(cls, entry: AuditLog) -> "AuditLogOut":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action,
            resource=entry.resource.value,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=to_iso(entry.created_at),
        )

