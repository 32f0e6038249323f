"""
CSI Portal
Master data blueprint — organisation hierarchy, functions and applications.

Each resource gets the same five endpoints:

    GET    /api/v1/<resource>          — list (resource-specific filters)
    GET    /api/v1/<resource>/<id>
    POST   /api/v1/<resource>
    PUT    /api/v1/<resource>/<id>
    DELETE /api/v1/<resource>/<id>

Resources and their list filters:
    business-units   ?is_active
    divisions        ?business_unit_id, ?is_active
    departments      ?division_id, ?is_active
    functions        ?is_active
    applications     ?is_active
"""

from flask import Blueprint, request

from csi_portal.blueprints import json_body
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import master_data_service as svc
from csi_portal.utils.errors import api_ok

master_data_bp = Blueprint("master_data", __name__, url_prefix="/api/v1")

# url segment → (service noun, list filter query params)
_RESOURCES = {
    "business-units": ("business_unit", ("is_active",)),
    "divisions": ("division", ("business_unit_id", "is_active")),
    "departments": ("department", ("division_id", "is_active")),
    "functions": ("function", ("is_active",)),
    "applications": ("application", ("is_active",)),
}


def _register(segment, noun, filters):
    plural = f"{noun}s"
    list_fn = getattr(svc, f"list_{plural}")
    get_fn = getattr(svc, f"get_{noun}")
    create_fn = getattr(svc, f"create_{noun}")
    update_fn = getattr(svc, f"update_{noun}")
    delete_fn = getattr(svc, f"delete_{noun}")

    @require_permission("master-data:read")
    def list_view():
        items = list_fn(**{f: request.args.get(f) for f in filters})
        return api_ok([i.to_dict() for i in items], total=len(items))

    @require_permission("master-data:read")
    def get_view(item_id):
        return api_ok(get_fn(item_id).to_dict())

    @require_permission("master-data:create")
    def create_view():
        return api_ok(create_fn(json_body()).to_dict(), status=201)

    @require_permission("master-data:update")
    def update_view(item_id):
        return api_ok(update_fn(item_id, json_body()).to_dict())

    @require_permission("master-data:delete")
    def delete_view(item_id):
        delete_fn(item_id)
        return api_ok({"id": item_id, "message": f"{noun.replace('_', ' ').capitalize()} deleted"})

    master_data_bp.add_url_rule(f"/{segment}", f"list_{plural}", list_view, methods=["GET"])
    master_data_bp.add_url_rule(f"/{segment}/<int:item_id>", f"get_{noun}", get_view, methods=["GET"])
    master_data_bp.add_url_rule(f"/{segment}", f"create_{noun}", create_view, methods=["POST"])
    master_data_bp.add_url_rule(f"/{segment}/<int:item_id>", f"update_{noun}", update_view, methods=["PUT"])
    master_data_bp.add_url_rule(f"/{segment}/<int:item_id>", f"delete_{noun}", delete_view, methods=["DELETE"])


for _segment, (_noun, _filters) in _RESOURCES.items():
    _register(_segment, _noun, _filters)
