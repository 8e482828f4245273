"""
auth/audit.py -- Best-effort append-only audit trail.

record() is called after the primary store write has committed. Any
failure while writing the audit row is logged to the "keyward.audit"
logger and swallowed: an audit outage must never turn a successful login,
logout or admin change into an error response.
"""

from __future__ import annotations

import logging

from auth.models import AuditAction, AuditLog, AuditResource, ClientInfo
from auth.store import AuthStore

logger = logging.getLogger("keyward.audit")


class AuditRecorder:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def record(
        self,
        user_id: str | None,
        action: AuditAction,
        resource: AuditResource,
        details: dict | None = None,
        client: ClientInfo | None = None,
    ) -> None:
        client = client or ClientInfo()
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            details=details or {},
            ip_address=client.ip,
            user_agent=client.user_agent,
        )
        try:
            self._store.create_audit_log(entry)
        except Exception:
            logger.exception("Failed to write audit event %s for user %s", action.value, user_id or "anonymous")
            return
        logger.info("Audit: %s by %s", action.value, user_id or "anonymous")
