"""
auth/admin.py -- Administrative user management.

Self-protection invariants live here, not in the authorization gate:
  - nobody changes their own role or status, or deletes their own account;
  - only a SUPER_ADMIN may change the status of, or delete, an ADMIN or
    SUPER_ADMIN account;
  - only a SUPER_ADMIN may grant or revoke ADMIN / SUPER_ADMIN roles.
The gate decides whether a caller may reach an operation at all; these
rules depend on the target record, which only this layer loads.

Role and status writes are single UPDATE statements on the store.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditRecorder
from auth.errors import DuplicateEmailError, ForbiddenError, NotFoundError, PasswordPolicyError
from auth.models import ADMIN_ROLES, AuditAction, AuditLog, AuditResource, ClientInfo, Role, User, UserStatus
from auth.passwords import PasswordHasher, check_strength
from auth.service import PROFILE_FIELDS
from auth.store import AuthStore
from core.clock import Clock, utc_now

_RECENT_REGISTRATION_WINDOW = timedelta(days=30)


class UserAdministration:
    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        audit: AuditRecorder,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        status: UserStatus | None = None,
    ) -> tuple[list[User], int]:
        return self._store.list_users(page=page, limit=limit, search=search, role=role, status=status)

    def get_user(self, user_id: str) -> User:
        user = self._store.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def stats(self) -> dict[str, int]:
        return self._store.user_stats(since=self._clock() - _RECENT_REGISTRATION_WINDOW)

    def audit_logs(
        self,
        user_id: str | None = None,
        action: AuditAction | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        return self._store.list_audit_logs(user_id=user_id, action=action, start=start, end=end, limit=limit)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def change_role(self, actor: User, target_id: str, role: Role, client: ClientInfo) -> User:
        target = self.get_user(target_id)
        if target.id == actor.id:
            raise ForbiddenError("You cannot change your own role.")
        if actor.role is not Role.SUPER_ADMIN and (role in ADMIN_ROLES or target.role in ADMIN_ROLES):
            raise ForbiddenError("Only Super Admins can grant or revoke admin roles.")

        self._store.update_user(target.id, role=role)
        self._audit.record(
            actor.id,
            AuditAction.ROLE_CHANGED,
            AuditResource.USER,
            {
                "target_user_id": target.id,
                "target_user_email": target.email,
                "old_role": target.role.value,
                "new_role": role.value,
            },
            client,
        )
        return self.get_user(target.id)

    def change_status(self, actor: User, target_id: str, status: UserStatus, client: ClientInfo) -> User:
        target = self.get_user(target_id)
        if target.id == actor.id:
            raise ForbiddenError("You cannot change the status of your own account.")
        if target.role in ADMIN_ROLES and actor.role is not Role.SUPER_ADMIN:
            raise ForbiddenError("Only Super Admins can change the status of Admin accounts.")

        self._store.update_user(target.id, status=status)
        action = AuditAction.USER_ACTIVATED if status is UserStatus.ACTIVE else AuditAction.USER_DEACTIVATED
        self._audit.record(
            actor.id,
            action,
            AuditResource.USER,
            {
                "target_user_id": target.id,
                "target_user_email": target.email,
                "old_status": target.status.value,
                "new_status": status.value,
            },
            client,
        )
        return self.get_user(target.id)

    def delete_user(self, actor: User, target_id: str, client: ClientInfo) -> None:
        """Hard-delete an account; its sessions and audit rows go with it."""
        target = self.get_user(target_id)
        if target.id == actor.id:
            raise ForbiddenError("You cannot delete your own account.")
        if target.role in ADMIN_ROLES and actor.role is not Role.SUPER_ADMIN:
            raise ForbiddenError("Only Super Admins can delete Admin accounts.")

        if not self._store.delete_user(target.id):
            raise NotFoundError("User not found.")
        self._audit.record(
            actor.id,
            AuditAction.USER_DELETED,
            AuditResource.USER,
            {
                "deleted_user_id": target.id,
                "deleted_user_email": target.email,
                "deleted_user_role": target.role.value,
            },
            client,
        )

    def create_admin(
        self,
        actor: User,
        email: str,
        password: str,
        client: ClientInfo,
        role: Role = Role.ADMIN,
        **profile,
    ) -> User:
        """Create an account with an elevated role. Callers are gated to SUPER_ADMIN."""
        if actor.role is not Role.SUPER_ADMIN:
            raise ForbiddenError()
        email = email.strip().lower()
        violations = check_strength(password)
        if violations:
            raise PasswordPolicyError(violations)
        if self._store.find_user_by_email(email) is not None:
            raise DuplicateEmailError()

        new_user = User(
            email=email,
            password_hash=self._hasher.hash(password),
            role=role,
            status=UserStatus.ACTIVE,
            **{k: v for k, v in profile.items() if k in PROFILE_FIELDS},
        )
        try:
            user_id = self._store.create_user(new_user)
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc

        self._audit.record(
            actor.id,
            AuditAction.ADMIN_CREATED,
            AuditResource.USER,
            {"new_admin_id": user_id, "new_admin_email": email, "new_admin_role": role.value},
            client,
        )
        return self.get_user(user_id)
