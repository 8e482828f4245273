"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository for users,
sessions and audit rows; the _row_to_* functions are the mappers. Services
and dependencies never touch SQL directly.

One AuthStore is constructed per process by the API lifespan and passed to
every component that needs it. There is no module-level handle.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Sessions are looked up by token_hash (HMAC of the refresh token), so a
  leaked database dump does not hand out usable refresh tokens.

Concurrency:
  Read-modify-write on account state is expressed as a single UPDATE:
    - record_login_failure() increments the counter and sets locked_until
      in one statement, and only while no lock is active.
    - reset_login_failures() clears both and stamps last_login_at.
  Two concurrent failed logins can therefore never both read N and both
  write N+1. Mutual exclusion is left to the database's row locking.

  mark_session_rotated() only touches a row that is still live and returns
  the rowcount, so refresh-token rotation can tell whether it won a race
  against a concurrent refresh of the same session.

Timestamps are stored as fixed-width UTC ISO 8601 strings (core.clock.to_iso)
so string comparison in SQL matches chronological order.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import ADMIN_ROLES, AuditAction, AuditLog, AuditResource, Role, Session, User, UserStatus
from core.clock import from_iso, to_iso, utc_now

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'keyward_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("company", String(100)),
    Column("phone", String(20)),
    Column("website", String(255)),
    Column("bio", Text),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("status", String(30), nullable=False, server_default=UserStatus.ACTIVE.value),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
    Column("rotated_at", String(32)),  # set when rotation retires the row; kept until expiry
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), index=True),  # NULL for anonymous events
    Column("action", String(40), nullable=False),
    Column("resource", String(20), nullable=False),
    Column("details", Text),  # JSON object serialized as text
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

# Columns update_user() accepts. Lockout columns are excluded on purpose:
# they only change through the atomic helpers below.
_USER_MUTABLE: frozenset[str] = frozenset(
    {
        "email",
        "password_hash",
        "first_name",
        "last_name",
        "company",
        "phone",
        "website",
        "bio",
        "role",
        "status",
        "email_verified",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _new_id() -> str:
    return str(uuid.uuid4())


def _db_value(value):
    if isinstance(value, (Role, UserStatus, AuditAction, AuditResource)):
        return value.value
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return to_iso(value)
    return value


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session and AuditLog entities.

    Usage:
        store = AuthStore("sqlite:///auth.db")
        user_id = store.create_user(User(email="a@x.com", password_hash=hasher.hash("Str0ng!Pass")))
        user = store.find_user_by_email("A@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a duplicate registration that lost a race
        against a concurrent request.
        """
        user_id = _new_id()
        now = to_iso(utc_now())
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.strip().lower(),
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    company=user.company,
                    phone=user.phone,
                    website=user.website,
                    bio=user.bio,
                    role=user.role.value,
                    status=user.status.value,
                    email_verified=1 if user.email_verified else 0,
                    failed_login_attempts=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def find_user_by_email(self, email: str) -> User | None:
        """Look up a user by email. The lookup is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user in one statement.

        Enum, bool and datetime values are converted for storage. Unknown
        field names raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _USER_MUTABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = {k: _db_value(v) for k, v in fields.items()}
        if "email" in values:
            values["email"] = values["email"].strip().lower()
        values["updated_at"] = to_iso(utc_now())
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user together with their sessions and audit rows.

        All three deletes run in one transaction so a failure part-way leaves
        the account intact. Returns False if the user did not exist.
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_audit_logs.delete().where(_audit_logs.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        status: UserStatus | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count."""
        conditions = []
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            conditions.append(
                or_(
                    _users.c.email.ilike(pattern, escape="\\"),
                    _users.c.first_name.ilike(pattern, escape="\\"),
                    _users.c.last_name.ilike(pattern, escape="\\"),
                    _users.c.company.ilike(pattern, escape="\\"),
                )
            )
        if role is not None:
            conditions.append(_users.c.role == role.value)
        if status is not None:
            conditions.append(_users.c.status == status.value)

        query = _users.select().where(*conditions).order_by(_users.c.created_at.desc())
        query = query.offset((page - 1) * limit).limit(limit)
        count_query = select(func.count()).select_from(_users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def user_stats(self, since: datetime) -> dict[str, int]:
        """Aggregate counts for the admin overview in a single query."""
        admin_values = [r.value for r in ADMIN_ROLES]
        query = select(
            func.count(),
            func.sum(case((_users.c.status == UserStatus.ACTIVE.value, 1), else_=0)),
            func.sum(case((_users.c.role.in_(admin_values), 1), else_=0)),
            func.sum(case((_users.c.created_at >= to_iso(since), 1), else_=0)),
        ).select_from(_users)
        with self.engine.connect() as conn:
            total, active, admins, recent = conn.execute(query).one()
        total = total or 0
        active = active or 0
        admins = admins or 0
        return {
            "total_users": total,
            "active_users": active,
            "inactive_users": total - active,
            "admin_users": admins,
            "regular_users": total - admins,
            "recent_registrations": recent or 0,
        }

    # ------------------------------------------------------------------
    # Lockout (atomic)
    # ------------------------------------------------------------------

    def record_login_failure(
        self, user_id: str, max_attempts: int, lock_until: datetime, now: datetime
    ) -> User | None:
        """Count one failed login and lock the account when the limit is reached.

        A single UPDATE increments failed_login_attempts and, if the new
        value reaches max_attempts, sets locked_until. SET expressions see
        the pre-update row, so both columns are computed from the same
        counter value. The WHERE clause skips rows with an active lock, so
        attempts that race past the caller's lock check do not extend it.

        Returns the user as stored after the update.
        """
        now_iso = to_iso(now)
        attempts = _users.c.failed_login_attempts + 1
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .where(or_(_users.c.locked_until.is_(None), _users.c.locked_until <= now_iso))
                .values(
                    failed_login_attempts=attempts,
                    locked_until=case((attempts >= max_attempts, to_iso(lock_until)), else_=_users.c.locked_until),
                    updated_at=now_iso,
                )
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def reset_login_failures(self, user_id: str, now: datetime) -> None:
        """Clear the lockout pair and stamp last_login_at after a successful login."""
        now_iso = to_iso(now)
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=0, locked_until=None, last_login_at=now_iso, updated_at=now_iso)
            )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        """Insert a session row and return its generated id."""
        session_id = _new_id()
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    expires_at=to_iso(session.expires_at),
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    created_at=to_iso(session.created_at or utc_now()),
                )
            )
        return session_id

    def find_session(self, token_hash: str) -> Session | None:
        """Look up a session by token hash. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token_hash: str) -> int:
        """Delete the session for a token hash. Returns the number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
        return result.rowcount

    def delete_sessions_by_user(self, user_id: str) -> int:
        """Delete every session row for a user, rotated ones included.

        Returns the number of live sessions removed.
        """
        with self.engine.begin() as conn:
            live = conn.execute(
                _sessions.delete().where((_sessions.c.user_id == user_id) & _sessions.c.rotated_at.is_(None))
            ).rowcount
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return live

    def mark_session_rotated(self, token_hash: str, now: datetime) -> int:
        """Retire a live session row. Returns 0 if another refresh got there first."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.token_hash == token_hash) & _sessions.c.rotated_at.is_(None))
                .values(rotated_at=to_iso(now))
            )
        return result.rowcount

    def delete_user_session(self, session_id: str, user_id: str) -> bool:
        """Delete one session. user_id is checked to prevent IDOR attacks.

        Both conditions must match, so a user cannot revoke another user's
        session even if they know its id.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.user_id == user_id)
                    & _sessions.c.rotated_at.is_(None)
                )
            )
        return result.rowcount > 0

    def update_session_client(self, session_id: str, ip: str | None, user_agent: str | None, now: datetime) -> None:
        """Record the latest requester metadata seen on a refresh."""
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(ip_address=ip, user_agent=user_agent, last_used_at=to_iso(now))
            )

    def list_sessions_for_user(self, user_id: str, now: datetime) -> list[Session]:
        """Return the user's live, unexpired sessions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.expires_at > to_iso(now))
                    & _sessions.c.rotated_at.is_(None)
                )
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired_sessions(self, now: datetime) -> int:
        """Delete every session whose expiry has passed. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= to_iso(now)))
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def create_audit_log(self, entry: AuditLog) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action.value,
                    resource=entry.resource.value,
                    details=json.dumps(entry.details or {}, default=str),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=to_iso(entry.created_at or utc_now()),
                )
            )
            return result.inserted_primary_key[0]

    def list_audit_logs(
        self,
        user_id: str | None = None,
        action: AuditAction | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Return audit rows matching every given filter, newest first."""
        conditions = []
        if user_id is not None:
            conditions.append(_audit_logs.c.user_id == user_id)
        if action is not None:
            conditions.append(_audit_logs.c.action == action.value)
        if start is not None:
            conditions.append(_audit_logs.c.created_at >= to_iso(start))
        if end is not None:
            conditions.append(_audit_logs.c.created_at <= to_iso(end))
        query = (
            _audit_logs.select()
            .where(*conditions)
            .order_by(_audit_logs.c.created_at.desc(), _audit_logs.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_log(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        company=row.company,
        phone=row.phone,
        website=row.website,
        bio=row.bio,
        role=Role(row.role),
        status=UserStatus(row.status),
        email_verified=bool(row.email_verified),
        failed_login_attempts=row.failed_login_attempts,
        locked_until=from_iso(row.locked_until),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
        last_login_at=from_iso(row.last_login_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=from_iso(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_iso(row.created_at),
        last_used_at=from_iso(row.last_used_at),
        rotated_at=from_iso(row.rotated_at),
    )


def _row_to_audit_log(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        user_id=row.user_id,
        action=AuditAction(row.action),
        resource=AuditResource(row.resource),
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_iso(row.created_at),
    )
