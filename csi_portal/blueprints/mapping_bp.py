"""
CSI Portal
Mapping blueprint — Function ↔ Application and Application ↔ Department links.

Endpoints:
    GET    /api/v1/mappings/function-application                  ?function_id, ?application_id
    POST   /api/v1/mappings/function-application
    DELETE /api/v1/mappings/function-application/<id>
    GET    /api/v1/mappings/function-application/function/<id>     — applications of a function
    GET    /api/v1/mappings/function-application/application/<id>  — functions of an application
    GET    /api/v1/mappings/function-application/export/csv

    GET    /api/v1/mappings/application-department                 ?application_id, ?department_id
    POST   /api/v1/mappings/application-department
    DELETE /api/v1/mappings/application-department/<id>
    GET    /api/v1/mappings/application-department/department/<id>
    GET    /api/v1/mappings/application-department/application/<id>
    GET    /api/v1/mappings/application-department/export/csv

    POST   /api/v1/mappings/bulk-import                            multipart file + mapping_type
    GET    /api/v1/mappings/bulk-import/template                   ?mapping_type
"""

from flask import Blueprint, Response, g, request

from csi_portal.blueprints import json_body, uploaded_workbook, xlsx_download
from csi_portal.blueprints.bulk_import_bp import import_response
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import bulk_import_service, mapping_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import utcnow

mapping_bp = Blueprint("mapping", __name__, url_prefix="/api/v1/mappings")


def _csv_response(kind):
    body = mapping_service.export_csv(kind)
    filename = f"{kind}-mappings-{utcnow():%Y%m%d}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# ── Function ↔ Application ───────────────────────────────────────────────────

@mapping_bp.route("/function-application", methods=["GET"])
@require_permission("mappings:read")
def list_function_application():
    items = mapping_service.list_function_application(
        request.args.get("function_id"), request.args.get("application_id"),
    )
    return api_ok([m.to_dict() for m in items], total=len(items))


@mapping_bp.route("/function-application", methods=["POST"])
@require_permission("mappings:create")
def create_function_application():
    mapping = mapping_service.create_function_application(json_body(), created_by=g.current_user.id)
    return api_ok(mapping.to_dict(), status=201)


@mapping_bp.route("/function-application/<int:mapping_id>", methods=["DELETE"])
@require_permission("mappings:delete")
def delete_function_application(mapping_id):
    mapping_service.delete_function_application(mapping_id)
    return api_ok({"id": mapping_id, "message": "Mapping deleted"})


@mapping_bp.route("/function-application/function/<int:function_id>", methods=["GET"])
@require_permission("mappings:read")
def applications_by_function(function_id):
    return api_ok([a.to_dict() for a in mapping_service.applications_by_function(function_id)])


@mapping_bp.route("/function-application/application/<int:application_id>", methods=["GET"])
@require_permission("mappings:read")
def functions_by_application(application_id):
    return api_ok([f.to_dict() for f in mapping_service.functions_by_application(application_id)])


@mapping_bp.route("/function-application/export/csv", methods=["GET"])
@require_permission("mappings:read")
def export_function_application():
    return _csv_response("function-application")


# ── Application ↔ Department ─────────────────────────────────────────────────

@mapping_bp.route("/application-department", methods=["GET"])
@require_permission("mappings:read")
def list_application_department():
    items = mapping_service.list_application_department(
        request.args.get("application_id"), request.args.get("department_id"),
    )
    return api_ok([m.to_dict() for m in items], total=len(items))


@mapping_bp.route("/application-department", methods=["POST"])
@require_permission("mappings:create")
def create_application_department():
    mapping = mapping_service.create_application_department(json_body(), created_by=g.current_user.id)
    return api_ok(mapping.to_dict(), status=201)


@mapping_bp.route("/application-department/<int:mapping_id>", methods=["DELETE"])
@require_permission("mappings:delete")
def delete_application_department(mapping_id):
    mapping_service.delete_application_department(mapping_id)
    return api_ok({"id": mapping_id, "message": "Mapping deleted"})


@mapping_bp.route("/application-department/department/<int:department_id>", methods=["GET"])
@require_permission("mappings:read")
def applications_by_department(department_id):
    return api_ok([a.to_dict() for a in mapping_service.applications_by_department(department_id)])


@mapping_bp.route("/application-department/application/<int:application_id>", methods=["GET"])
@require_permission("mappings:read")
def departments_by_application(application_id):
    return api_ok([d.to_dict() for d in mapping_service.departments_by_application(application_id)])


@mapping_bp.route("/application-department/export/csv", methods=["GET"])
@require_permission("mappings:read")
def export_application_department():
    return _csv_response("application-department")


# ── Bulk import ──────────────────────────────────────────────────────────────

@mapping_bp.route("/bulk-import", methods=["POST"])
@require_permission("mappings:create")
def bulk_import_mappings():
    content, options = uploaded_workbook()
    result = bulk_import_service.import_mappings(
        content, request.form.get("mapping_type", ""), created_by=g.current_user.id, **options,
    )
    return import_response(result)


@mapping_bp.route("/bulk-import/template", methods=["GET"])
@require_permission("mappings:read")
def bulk_import_template():
    mapping_type = request.args.get("mapping_type", "function-application")
    return xlsx_download(bulk_import_service.generate_mapping_template(mapping_type),
                         f"{mapping_type}-mappings-template.xlsx")
