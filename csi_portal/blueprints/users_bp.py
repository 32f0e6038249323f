"""
CSI Portal
Users blueprint — user administration (SuperAdmin).

Endpoints:
    GET    /api/v1/users                 — list (?role, ?is_active, ?search)
    GET    /api/v1/users/template        — .xlsx import template
    GET    /api/v1/users/<id>
    POST   /api/v1/users
    PUT    /api/v1/users/<id>
    DELETE /api/v1/users/<id>            — soft delete
    PATCH  /api/v1/users/<id>/ldap       — {"use_ldap": bool}
    PATCH  /api/v1/users/<id>/password   — {"password": "..."}
"""

from flask import Blueprint, request

from csi_portal.blueprints import json_body, xlsx_download
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import bulk_import_service, user_service
from csi_portal.utils.errors import api_ok

users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@users_bp.route("", methods=["GET"])
@require_permission("users:read")
def list_users():
    users = user_service.list_users(
        role=request.args.get("role"),
        is_active=request.args.get("is_active"),
        search=request.args.get("search"),
    )
    return api_ok([u.to_dict() for u in users], total=len(users))


@users_bp.route("/template", methods=["GET"])
@require_permission("users:read")
def download_template():
    return xlsx_download(bulk_import_service.generate_template("users"), "master-user-template.xlsx")


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_permission("users:read")
def get_user(user_id):
    return api_ok(user_service.get_user(user_id).to_dict())


@users_bp.route("", methods=["POST"])
@require_permission("users:create")
def create_user():
    user = user_service.create_user(json_body())
    return api_ok(user.to_dict(), status=201)


@users_bp.route("/<int:user_id>", methods=["PUT"])
@require_permission("users:update")
def update_user(user_id):
    return api_ok(user_service.update_user(user_id, json_body()).to_dict())


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@require_permission("users:delete")
def delete_user(user_id):
    user = user_service.delete_user(user_id)
    return api_ok({"id": user.id, "message": "User deactivated"})


@users_bp.route("/<int:user_id>/ldap", methods=["PATCH"])
@require_permission("users:update")
def toggle_ldap(user_id):
    user = user_service.toggle_ldap(user_id, json_body().get("use_ldap"))
    return api_ok(user.to_dict())


@users_bp.route("/<int:user_id>/password", methods=["PATCH"])
@require_permission("users:update")
def set_password(user_id):
    user = user_service.set_password(user_id, json_body().get("password"))
    return api_ok({"id": user.id, "message": "Password updated"})
