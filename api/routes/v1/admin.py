"""
api/routes/v1/admin.py -- Audit trail query endpoint.

Routes:
  GET /api/v1/audit-logs -- newest first, filterable by user, action and time range (admin)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import AuditLogOut, success_response
from auth.admin import UserAdministration
from auth.dependencies import require_admin
from auth.models import AuditAction, User

router = APIRouter()


@router.get("/audit-logs")
def list_audit_logs(
    request: Request,
    user_id: Optional[str] = Query(None),
    action: Optional[AuditAction] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> JSONResponse:
    admin: UserAdministration = request.app.state.admin
    logs = admin.audit_logs(user_id=user_id, action=action, start=start, end=end, limit=limit)
    return success_response({"logs": [AuditLogOut.from_domain(entry) for entry in logs], "count": len(logs)})
