"""
CSI Portal
Audit blueprint — audit trail queries and client-side event logging.

Endpoints:
    GET  /api/v1/audit                    ?user_id, ?action, ?entity_type, ?entity_id,
                                          ?start_date, ?end_date, ?page, ?per_page
    GET  /api/v1/audit/entity-history     ?entity_type, ?entity_id
    POST /api/v1/audit/log                {action: Access|Export, entity_type, entity_id?, details?}
"""

from flask import Blueprint, request

from csi_portal.blueprints import json_body, page_args
from csi_portal.core.exceptions import ValidationError
from csi_portal.middleware.permission_required import require_auth, require_permission
from csi_portal.services import audit_service
from csi_portal.utils.errors import api_ok

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1/audit")

_AUDIT_FILTERS = ("user_id", "action", "entity_type", "entity_id", "start_date", "end_date")
CLIENT_ACTIONS = ("Access", "Export")


@audit_bp.route("", methods=["GET"])
@require_permission("audit:read")
def list_audit_logs():
    page, per_page = page_args()
    filters = {key: request.args.get(key) for key in _AUDIT_FILTERS}
    result = audit_service.get_audit_logs(filters, page=page, per_page=per_page)
    return api_ok(
        result["items"], total=result["total"], page=result["page"], per_page=result["per_page"],
    )


@audit_bp.route("/entity-history", methods=["GET"])
@require_permission("audit:read")
def entity_history():
    rows = audit_service.get_entity_history(
        request.args.get("entity_type"), request.args.get("entity_id"),
    )
    return api_ok(rows, total=len(rows))


@audit_bp.route("/log", methods=["POST"])
@require_auth
def log_client_event():
    data = json_body()
    action = data.get("action")
    if action not in CLIENT_ACTIONS:
        raise ValidationError(f"Action must be one of: {', '.join(CLIENT_ACTIONS)}")
    if not data.get("entity_type"):
        raise ValidationError("entity_type is required")
    log = audit_service.log_action(
        action,
        entity_type=data["entity_type"],
        entity_id=data.get("entity_id"),
        new_values=data.get("details"),
    )
    return api_ok({"logged": log is not None}, status=201)
