"""
CSI Portal
Audit Service.

Writing:
    ``log_action`` and its convenience wrappers never raise. Each audit row
    is committed on its own, so callers invoke them after their unit of work
    is committed; a failing insert is rolled back, logged and swallowed.
    Passing ``commit=False`` instead writes the row inside the caller's
    transaction (approve/reject use this).

Reading:
    ``get_audit_logs`` (filtered + paginated) and ``get_entity_history``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from flask import g, has_request_context
from sqlalchemy import select

from csi_portal.core.exceptions import ValidationError
from csi_portal.models import db
from csi_portal.models.audit import AUDIT_ACTIONS, AuditLog, write_audit
from csi_portal.utils.helpers import client_ip, parse_datetime, user_agent

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 200


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _actor() -> tuple[int | None, str | None]:
    if not has_request_context():
        return None, None
    user = getattr(g, "current_user", None)
    if user is None:
        return None, None
    return user.id, user.username


def log_action(
    action: str,
    *,
    entity_type: str | None = None,
    entity_id=None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    user_id: int | None = None,
    username: str | None = None,
    commit: bool = True,
) -> AuditLog | None:
    """Append and commit an audit row; returns None instead of raising.

    The acting user and request metadata default to the current request.
    With ``commit=False`` the row joins the caller's transaction and
    errors propagate so the whole unit of work rolls back together.
    """
    if user_id is None and username is None:
        user_id, username = _actor()
    row = dict(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        username=username,
        old_values=_jsonable(old_values),
        new_values=_jsonable(new_values),
        ip_address=client_ip(),
        user_agent=user_agent(),
    )
    if not commit:
        return write_audit(**row)
    try:
        log = write_audit(**row)
        db.session.commit()
        return log
    except Exception:
        db.session.rollback()
        logger.exception("Failed to write audit log: action=%s entity=%s/%s",
                         action, entity_type, entity_id)
        return None


def log_create(entity_type, entity_id, new_values=None, **kw):
    return log_action("Create", entity_type=entity_type, entity_id=entity_id,
                      new_values=new_values, **kw)


def log_update(entity_type, entity_id, old_values=None, new_values=None, **kw):
    return log_action("Update", entity_type=entity_type, entity_id=entity_id,
                      old_values=old_values, new_values=new_values, **kw)


def log_delete(entity_type, entity_id, old_values=None, **kw):
    return log_action("Delete", entity_type=entity_type, entity_id=entity_id,
                      old_values=old_values, **kw)


def log_auth_attempt(username: str, success: bool, user_id: int | None = None):
    return log_action(
        "Login" if success else "LoginFailed",
        entity_type="User",
        entity_id=user_id,
        user_id=user_id,
        username=username or "anonymous",
        new_values={"success": success},
    )


def log_logout(user_id: int, username: str):
    return log_action("Logout", entity_type="User", entity_id=user_id,
                      user_id=user_id, username=username)


def log_approve(entity_type, entity_id, details=None, **kw):
    return log_action("Approve", entity_type=entity_type, entity_id=entity_id,
                      new_values=details, **kw)


def log_reject(entity_type, entity_id, details=None, **kw):
    return log_action("Reject", entity_type=entity_type, entity_id=entity_id,
                      new_values=details, **kw)


def log_export(entity_type, export_details=None, **kw):
    return log_action("Export", entity_type=entity_type,
                      new_values=export_details, **kw)


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════

def get_audit_logs(filters: dict, page: int = 1, per_page: int = 50) -> dict:
    """Return ``{items, total, page, per_page}`` newest first."""
    stmt = select(AuditLog)

    if filters.get("user_id"):
        stmt = stmt.where(AuditLog.user_id == int(filters["user_id"]))
    if filters.get("action"):
        if filters["action"] not in AUDIT_ACTIONS:
            raise ValidationError(f"Action must be one of: {', '.join(sorted(AUDIT_ACTIONS))}")
        stmt = stmt.where(AuditLog.action == filters["action"])
    if filters.get("entity_type"):
        stmt = stmt.where(AuditLog.entity_type == filters["entity_type"])
    if filters.get("entity_id"):
        stmt = stmt.where(AuditLog.entity_id == str(filters["entity_id"]))
    start = parse_datetime(filters.get("start_date"))
    if start:
        stmt = stmt.where(AuditLog.timestamp >= start)
    end = parse_datetime(filters.get("end_date"))
    if end:
        stmt = stmt.where(AuditLog.timestamp <= end)

    page = max(page or 1, 1)
    per_page = min(max(per_page or 50, 1), MAX_PER_PAGE)

    total = db.session.scalar(select(db.func.count()).select_from(stmt.subquery()))
    rows = db.session.scalars(
        stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(per_page).offset((page - 1) * per_page)
    ).all()
    return {
        "items": [r.to_dict() for r in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


def get_entity_history(entity_type: str, entity_id) -> list[dict]:
    if not entity_type or entity_id in (None, ""):
        raise ValidationError("entity_type and entity_id are required")
    rows = db.session.scalars(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    ).all()
    return [r.to_dict() for r in rows]
