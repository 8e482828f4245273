"""
auth/service.py -- Account flows: registration, login, refresh, logout, self-service.

Pattern: Service layer. Each public method is one use case. It talks to the
store, hasher, token authority and lockout guard, raises an AuthError on
failure, and records an audit event once the outcome is committed.
Route handlers only translate HTTP to these calls and back.

Login pipeline:
  Lockout Guard -> Password Hasher -> Token Authority (mint)
  -> Session Store (persist) -> Audit Recorder

Security:
  [C1] Unknown emails still cost one bcrypt verification (hasher.burn) and
       produce the same InvalidCredentialsError as a wrong password, so
       neither timing nor message reveals which accounts exist.
  A password change revokes every session of the account. Access tokens
  already issued keep verifying until they expire, but refresh is gone.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditRecorder
from auth.errors import (
    AccountLockedError,
    AccountNotActiveError,
    AuthError,
    DuplicateEmailError,
    InvalidCredentialsError,
    NotFoundError,
    PasswordPolicyError,
    RefreshTokenReuseError,
    ValidationFailed,
)
from auth.lockout import LockoutGuard
from auth.models import (
    AuditAction,
    AuditResource,
    ClientInfo,
    RefreshResult,
    Role,
    Session,
    TokenPair,
    User,
    UserStatus,
)
from auth.passwords import PasswordHasher, check_strength
from auth.store import AuthStore
from auth.tokens import TokenAuthority
from core.clock import Clock, utc_now

# Profile fields a user may change on themself. role/status/email are not here.
PROFILE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "company", "phone", "website", "bio"})


class AccountService:
    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        tokens: TokenAuthority,
        lockout: LockoutGuard,
        audit: AuditRecorder,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = tokens
        self._lockout = lockout
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, client: ClientInfo, **profile) -> tuple[User, TokenPair]:
        """Create a USER account and sign it in. Returns the user and a fresh token pair."""
        email = email.strip().lower()
        violations = check_strength(password)
        if violations:
            raise PasswordPolicyError(violations)

        if self._store.find_user_by_email(email) is not None:
            self._audit.record(
                None,
                AuditAction.USER_REGISTER,
                AuditResource.USER,
                {"email": email, "success": False, "reason": "Email already exists"},
                client,
            )
            raise DuplicateEmailError()

        new_user = User(
            email=email,
            password_hash=self._hasher.hash(password),
            role=Role.USER,
            status=UserStatus.ACTIVE,
            **{k: v for k, v in profile.items() if k in PROFILE_FIELDS},
        )
        try:
            user_id = self._store.create_user(new_user)
        except IntegrityError as exc:
            # A concurrent registration for the same email won the insert.
            raise DuplicateEmailError() from exc

        user = self._store.find_user_by_id(user_id)
        pair = self._tokens.issue_pair(user, client)
        self._audit.record(
            user.id,
            AuditAction.USER_REGISTER,
            AuditResource.USER,
            {"email": user.email, "role": user.role.value, "success": True},
            client,
        )
        return user, pair

    def login(self, email: str, password: str, client: ClientInfo) -> tuple[User, TokenPair]:
        """Authenticate with email and password under lockout protection."""
        email = email.strip().lower()
        user = self._store.find_user_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self._hasher.burn(password)
            self._login_failed(None, client, email=email, reason="User not found")
            raise InvalidCredentialsError()

        try:
            self._lockout.ensure_not_locked(user)
        except AccountLockedError:
            self._login_failed(user.id, client, email=user.email, reason="Account locked")
            raise

        if not self._hasher.verify(password, user.password_hash):
            updated = self._lockout.register_failure(user)
            self._login_failed(
                user.id,
                client,
                email=user.email,
                attempts=updated.failed_login_attempts,
                locked=self._lockout.is_locked(updated),
            )
            raise InvalidCredentialsError()

        if not user.is_active:
            self._login_failed(
                user.id, client, email=user.email, reason="Account not active", status=user.status.value
            )
            raise AccountNotActiveError()

        self._lockout.register_success(user)
        user = self._store.find_user_by_id(user.id) or user
        pair = self._tokens.issue_pair(user, client)
        self._audit.record(
            user.id, AuditAction.USER_LOGIN, AuditResource.USER, {"email": user.email, "success": True}, client
        )
        return user, pair

    def _login_failed(self, user_id: str | None, client: ClientInfo, **details) -> None:
        self._audit.record(user_id, AuditAction.USER_LOGIN_FAILED, AuditResource.USER, details, client)

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, client: ClientInfo) -> RefreshResult:
        try:
            result = self._tokens.refresh(refresh_token, client)
        except RefreshTokenReuseError as exc:
            self._audit.record(
                exc.user_id,
                AuditAction.REFRESH_TOKEN_REUSE,
                AuditResource.SESSION,
                {"sessions_revoked": exc.revoked},
                client,
            )
            raise
        except AuthError as exc:
            self._audit.record(
                None, AuditAction.TOKEN_REFRESH_FAILED, AuditResource.SESSION, {"reason": exc.code}, client
            )
            raise
        self._audit.record(
            result.user.id,
            AuditAction.TOKEN_REFRESH,
            AuditResource.SESSION,
            {"success": True, "rotated": result.rotated},
            client,
        )
        return result

    def logout(
        self,
        refresh_token: str | None,
        client: ClientInfo,
        user: User | None = None,
        all_sessions: bool = False,
    ) -> int:
        """End one session, or all of them for an authenticated caller.

        Idempotent: an unknown or already-revoked refresh token is not an
        error. Returns the number of sessions removed.
        """
        if all_sessions and user is not None:
            revoked = self._tokens.revoke_all(user.id)
            self._audit.record(
                user.id,
                AuditAction.USER_LOGOUT,
                AuditResource.SESSION,
                {"all_sessions": True, "sessions_revoked": revoked},
                client,
            )
            return revoked

        if not refresh_token:
            return 0
        session = self._tokens.revoke(refresh_token)
        if session is None:
            return 0
        self._audit.record(session.user_id, AuditAction.USER_LOGOUT, AuditResource.SESSION, {"success": True}, client)
        return 1

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def update_profile(self, user: User, changes: dict, client: ClientInfo) -> User:
        """Apply profile field changes. Fields outside PROFILE_FIELDS are rejected."""
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationFailed(errors=[{"field": f, "message": "Field cannot be changed."} for f in sorted(unknown)])
        if changes:
            self._store.update_user(user.id, **changes)
            self._audit.record(
                user.id, AuditAction.USER_UPDATED, AuditResource.USER, {"fields": sorted(changes)}, client
            )
        return self._store.find_user_by_id(user.id) or user

    def change_password(self, user: User, current_password: str, new_password: str, client: ClientInfo) -> int:
        """Replace the password and revoke every session. Returns sessions revoked."""
        if not self._hasher.verify(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect.")
        if current_password == new_password:
            raise ValidationFailed(
                errors=[{"field": "new_password", "message": "New password must differ from the current password."}]
            )
        violations = check_strength(new_password)
        if violations:
            raise PasswordPolicyError(violations, field="new_password")

        self._store.update_user(user.id, password_hash=self._hasher.hash(new_password))
        revoked = self._tokens.revoke_all(user.id)
        self._audit.record(
            user.id, AuditAction.PASSWORD_CHANGED, AuditResource.USER, {"sessions_revoked": revoked}, client
        )
        return revoked

    def list_sessions(self, user: User) -> list[Session]:
        return self._store.list_sessions_for_user(user.id, self._clock())

    def revoke_session(self, user: User, session_id: str, client: ClientInfo) -> None:
        if not self._store.delete_user_session(session_id, user.id):
            raise NotFoundError("Session not found.")
        self._audit.record(
            user.id, AuditAction.SESSION_REVOKED, AuditResource.SESSION, {"session_id": session_id}, client
        )

    def revoke_all_sessions(self, user: User, client: ClientInfo) -> int:
        revoked = self._tokens.revoke_all(user.id)
        self._audit.record(
            user.id, AuditAction.SESSIONS_REVOKED, AuditResource.SESSION, {"sessions_revoked": revoked}, client
        )
        return revoked
