"""
Audit middleware — one AuditLog row per successful state-changing request.

Action comes from the HTTP method, the entity type from the first path
segment after ``/api/v1``, and the entity id from the response body
(``data.id``) or the first numeric path segment. Auth, audit and health
endpoints are skipped; auth writes its own Login/Logout rows.
"""

import logging

from flask import request

from csi_portal.services import audit_service

logger = logging.getLogger(__name__)

_METHOD_LOGGERS = {
    "POST": audit_service.log_create,
    "PUT": audit_service.log_update,
    "PATCH": audit_service.log_update,
    "DELETE": audit_service.log_delete,
}

_ENTITY_TYPES = {
    "users": "User",
    "business-units": "BusinessUnit",
    "divisions": "Division",
    "departments": "Department",
    "functions": "Function",
    "applications": "Application",
    "surveys": "Survey",
    "questions": "Question",
    "responses": "Response",
    "mappings": "Mapping",
    "approvals": "Approval",
    "emails": "Email",
    "scheduler": "ScheduledOperation",
    "reports": "Report",
    "bulk-import": "BulkImport",
}

_SKIP_PREFIXES = ("/api/v1/auth", "/api/v1/audit", "/api/v1/health")


def entity_type_from_path(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    # ["api", "v1", "<resource>", ...]
    if len(parts) < 3:
        return "Unknown"
    return _ENTITY_TYPES.get(parts[2], "Unknown")


def entity_id_from_path(path: str) -> str | None:
    for part in path.split("/"):
        if part.isdigit():
            return part
    return None


def _entity_id_from_response(response) -> str | None:
    if not response.is_json:
        return None
    body = response.get_json(silent=True)
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


def init_audit_logger(app):
    """Register the after_request audit hook."""

    @app.after_request
    def _audit_request(response):
        log = _METHOD_LOGGERS.get(request.method)
        path = request.path
        if log is None or not path.startswith("/api/v1/") or path.startswith(_SKIP_PREFIXES):
            return response
        if not 200 <= response.status_code < 300:
            return response

        try:
            entity_id = _entity_id_from_response(response) or entity_id_from_path(path)
            details = {"method": request.method, "path": path, "status": response.status_code}
            log(entity_type_from_path(path), entity_id, new_values=details)
        except Exception:
            logger.exception("Audit middleware failed for %s %s", request.method, path)
        return response
