"""
tests/test_store.py -- Unit tests for AuthStore (users, sessions, audit rows).

Every test gets an isolated SQLite file via the `store` fixture in conftest.
Rows are inserted through the public API only, never via raw SQL.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import AuditAction, AuditLog, AuditResource, Role, Session, User, UserStatus
from auth.store import AuthStore
from core.clock import utc_now


def _user(email: str, **kwargs) -> User:
    return User(email=email, password_hash="$2b$04$placeholder", **kwargs)


class TestUsers:
    def test_create_and_find(self, store: AuthStore) -> None:
        user_id = store.create_user(_user("a@x.com", first_name="Ada"))
        by_id = store.find_user_by_id(user_id)
        assert by_id is not None
        assert by_id.email == "a@x.com"
        assert by_id.first_name == "Ada"
        assert by_id.role is Role.USER
        assert by_id.status is UserStatus.ACTIVE
        assert by_id.failed_login_attempts == 0
        assert by_id.created_at is not None

    def test_email_lookup_is_case_insensitive(self, store: AuthStore) -> None:
        store.create_user(_user("Mixed@Example.com"))
        found = store.find_user_by_email("MIXED@example.COM")
        assert found is not None
        assert found.email == "mixed@example.com"

    def test_duplicate_email_raises_integrity_error(self, store: AuthStore) -> None:
        store.create_user(_user("dup@x.com"))
        with pytest.raises(IntegrityError):
            store.create_user(_user("DUP@x.com"))

    def test_find_missing_returns_none(self, store: AuthStore) -> None:
        assert store.find_user_by_id("nope") is None
        assert store.find_user_by_email("nope@x.com") is None

    def test_update_user_converts_enums(self, store: AuthStore) -> None:
        user_id = store.create_user(_user("u@x.com"))
        assert store.update_user(user_id, role=Role.ADMIN, status=UserStatus.SUSPENDED) is True
        updated = store.find_user_by_id(user_id)
        assert updated.role is Role.ADMIN
        assert updated.status is UserStatus.SUSPENDED

    def test_update_unknown_field_raises(self, store: AuthStore) -> None:
        user_id = store.create_user(_user("u@x.com"))
        with pytest.raises(ValueError):
            store.update_user(user_id, failed_login_attempts=0)

    def test_update_missing_user_returns_false(self, store: AuthStore) -> None:
        assert store.update_user("missing", first_name="x") is False

    def test_delete_user_cascades(self, store: AuthStore) -> None:
        user_id = store.create_user(_user("gone@x.com"))
        store.create_session(Session(user_id=user_id, token_hash="h1", expires_at=utc_now() + timedelta(days=1)))
        store.create_audit_log(AuditLog(action=AuditAction.USER_LOGIN, resource=AuditResource.USER, user_id=user_id))

        assert store.delete_user(user_id) is True
        assert store.find_user_by_id(user_id) is None
        assert store.find_session("h1") is None
        assert store.list_audit_logs(user_id=user_id) == []
        assert store.delete_user(user_id) is False


class TestListAndStats:
    def test_list_users_paginates_and_counts(self, store: AuthStore) -> None:
        for i in range(5):
            store.create_user(_user(f"user{i}@x.com"))
        page, total = store.list_users(page=2, limit=2)
        assert total == 5
        assert len(page) == 2

    def test_list_users_filters(self, store: AuthStore) -> None:
        store.create_user(_user("alice@x.com", first_name="Alice"))
        store.create_user(_user("bob@x.com", role=Role.ADMIN))
        store.create_user(_user("carol@x.com", status=UserStatus.INACTIVE))

        users, total = store.list_users(search="ali")
        assert total == 1 and users[0].email == "alice@x.com"

        users, total = store.list_users(role=Role.ADMIN)
        assert total == 1 and users[0].email == "bob@x.com"

        users, total = store.list_users(status=UserStatus.INACTIVE)
        assert total == 1 and users[0].email == "carol@x.com"

    def test_search_treats_wildcards_literally(self, store: AuthStore) -> None:
        store.create_user(_user("axb@x.com"))
        store.create_user(_user("a_b@x.com"))
        store.create_user(_user("100pct@x.com", company="100% Cotton"))
        store.create_user(_user("back@x.com", company="C:\\Users"))

        users, total = store.list_users(search="a_b")
        assert total == 1 and users[0].email == "a_b@x.com"

        users, total = store.list_users(search="0%")
        assert total == 1 and users[0].email == "100pct@x.com"

        users, total = store.list_users(search="c:\\u")
        assert total == 1 and users[0].email == "back@x.com"

    def test_user_stats(self, store: AuthStore) -> None:
        store.create_user(_user("a@x.com"))
        store.create_user(_user("b@x.com", role=Role.ADMIN))
        store.create_user(_user("c@x.com", role=Role.SUPER_ADMIN, status=UserStatus.SUSPENDED))

        stats = store.user_stats(since=utc_now() - timedelta(days=30))
        assert stats == {
            "total_users": 3,
            "active_users": 2,
            "inactive_users": 1,
            "admin_users": 2,
            "regular_users": 1,
            "recent_registrations": 3,
        }

    def test_user_stats_on_empty_store(self, store: AuthStore) -> None:
        stats = store.user_stats(since=utc_now())
        assert stats["total_users"] == 0
        assert stats["recent_registrations"] == 0


class TestSessions:
    def test_session_lifecycle(self, store: AuthStore) -> None:
        now = utc_now()
        user_id = store.create_user(_user("s@x.com"))
        session_id = store.create_session(
            Session(user_id=user_id, token_hash="abc", expires_at=now + timedelta(days=1), ip_address="1.2.3.4")
        )
        found = store.find_session("abc")
        assert found.id == session_id
        assert found.ip_address == "1.2.3.4"

        store.update_session_client(session_id, "5.6.7.8", "curl/8", now)
        found = store.find_session("abc")
        assert found.ip_address == "5.6.7.8"
        assert found.last_used_at == now

        assert store.delete_session("abc") == 1
        assert store.delete_session("abc") == 0

    def test_delete_user_session_checks_owner(self, store: AuthStore) -> None:
        owner = store.create_user(_user("owner@x.com"))
        other = store.create_user(_user("other@x.com"))
        session_id = store.create_session(
            Session(user_id=owner, token_hash="own", expires_at=utc_now() + timedelta(days=1))
        )
        assert store.delete_user_session(session_id, other) is False
        assert store.find_session("own") is not None
        assert store.delete_user_session(session_id, owner) is True

    def test_list_and_purge_excludes_expired(self, store: AuthStore) -> None:
        now = utc_now()
        user_id = store.create_user(_user("p@x.com"))
        store.create_session(Session(user_id=user_id, token_hash="live", expires_at=now + timedelta(hours=1)))
        store.create_session(Session(user_id=user_id, token_hash="dead", expires_at=now - timedelta(hours=1)))

        live = store.list_sessions_for_user(user_id, now)
        assert [s.token_hash for s in live] == ["live"]
        assert store.purge_expired_sessions(now) == 1
        assert store.find_session("dead") is None
        assert store.find_session("live") is not None

    def test_delete_sessions_by_user(self, store: AuthStore) -> None:
        user_id = store.create_user(_user("m@x.com"))
        for i in range(3):
            store.create_session(Session(user_id=user_id, token_hash=f"t{i}", expires_at=utc_now() + timedelta(days=1)))
        assert store.delete_sessions_by_user(user_id) == 3
        assert store.delete_sessions_by_user(user_id) == 0

    def test_rotated_session_is_retired_not_deleted(self, store: AuthStore) -> None:
        now = utc_now()
        user_id = store.create_user(_user("r@x.com"))
        session_id = store.create_session(
            Session(user_id=user_id, token_hash="old", expires_at=now + timedelta(days=1))
        )
        store.create_session(Session(user_id=user_id, token_hash="new", expires_at=now + timedelta(days=1)))

        assert store.mark_session_rotated("old", now) == 1
        assert store.mark_session_rotated("old", now) == 0
        assert store.find_session("old").rotated_at == now

        assert [s.token_hash for s in store.list_sessions_for_user(user_id, now)] == ["new"]
        assert store.delete_user_session(session_id, user_id) is False

        # Only live sessions are counted, but the retired row goes too.
        assert store.delete_sessions_by_user(user_id) == 1
        assert store.find_session("old") is None


class TestAuditLogs:
    def test_filters_and_ordering(self, store: AuthStore) -> None:
        now = utc_now()
        store.create_audit_log(
            AuditLog(
                action=AuditAction.USER_LOGIN,
                resource=AuditResource.USER,
                user_id="u1",
                details={"success": True},
                created_at=now - timedelta(hours=2),
            )
        )
        store.create_audit_log(
            AuditLog(action=AuditAction.USER_LOGOUT, resource=AuditResource.SESSION, user_id="u1", created_at=now)
        )
        store.create_audit_log(
            AuditLog(action=AuditAction.USER_LOGIN, resource=AuditResource.USER, user_id="u2", created_at=now)
        )

        logs = store.list_audit_logs(user_id="u1")
        assert [entry.action for entry in logs] == [AuditAction.USER_LOGOUT, AuditAction.USER_LOGIN]
        assert logs[1].details == {"success": True}

        logins = store.list_audit_logs(action=AuditAction.USER_LOGIN)
        assert len(logins) == 2

        recent = store.list_audit_logs(start=now - timedelta(hours=1))
        assert len(recent) == 2

        assert len(store.list_audit_logs(limit=1)) == 1
