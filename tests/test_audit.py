"""
tests/test_audit.py -- Unit tests for the best-effort AuditRecorder.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from auth.audit import AuditRecorder
from auth.models import AuditAction, AuditResource, ClientInfo
from auth.store import AuthStore


class TestAuditRecorder:
    def test_record_persists_client_details(self, store: AuthStore) -> None:
        recorder = AuditRecorder(store)
        recorder.record(
            "u1",
            AuditAction.USER_LOGIN,
            AuditResource.USER,
            {"email": "a@x.com"},
            ClientInfo(ip="10.0.0.1", user_agent="pytest"),
        )

        (entry,) = store.list_audit_logs(user_id="u1")
        assert entry.action is AuditAction.USER_LOGIN
        assert entry.resource is AuditResource.USER
        assert entry.details == {"email": "a@x.com"}
        assert entry.ip_address == "10.0.0.1"
        assert entry.user_agent == "pytest"

    def test_anonymous_event_without_client(self, store: AuthStore) -> None:
        AuditRecorder(store).record(None, AuditAction.USER_LOGIN_FAILED, AuditResource.USER)
        (entry,) = store.list_audit_logs(action=AuditAction.USER_LOGIN_FAILED)
        assert entry.user_id is None
        assert entry.details == {}
        assert entry.ip_address is None

    def test_store_failure_is_logged_not_raised(self, caplog) -> None:
        """An audit outage must never fail the operation being audited."""
        broken = MagicMock()
        broken.create_audit_log.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        recorder = AuditRecorder(broken)

        with caplog.at_level(logging.ERROR, logger="keyward.audit"):
            recorder.record("u1", AuditAction.USER_LOGOUT, AuditResource.SESSION)

        assert "Failed to write audit event USER_LOGOUT" in caplog.text
