"""
CSI Portal
Bulk Import Blueprint — Excel import of master data and users.

Endpoints (multipart ``file``, optional ``skip_duplicates`` / ``update_existing``):
    POST /api/v1/bulk-import/<entity>            — import rows, per-row results
    GET  /api/v1/bulk-import/<entity>/template   — download the .xlsx template

<entity> is one of business-units, divisions, departments, functions,
applications, users. Mappings import through /api/v1/mappings/bulk-import.

A fully successful import answers 200, an import with failed rows 207.
"""

from flask import Blueprint, g

from csi_portal.blueprints import uploaded_workbook, xlsx_download
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import bulk_import_service
from csi_portal.utils.errors import api_ok

bulk_import_bp = Blueprint("bulk_import", __name__, url_prefix="/api/v1/bulk-import")

# entity → (import permission, template permission)
_ENTITIES = {
    "business-units": ("master-data:create", "master-data:read"),
    "divisions": ("master-data:create", "master-data:read"),
    "departments": ("master-data:create", "master-data:read"),
    "functions": ("master-data:create", "master-data:read"),
    "applications": ("master-data:create", "master-data:read"),
    "users": ("users:create", "users:read"),
}


def import_response(result):
    return api_ok(result, status=200 if result["status"] == "completed" else 207)


def _register(entity, import_permission, read_permission):
    noun = entity.replace("-", "_")

    @require_permission(import_permission)
    def import_view():
        content, options = uploaded_workbook()
        result = bulk_import_service.import_workbook(
            content, entity, created_by=g.current_user.id, **options,
        )
        return import_response(result)

    @require_permission(read_permission)
    def template_view():
        return xlsx_download(bulk_import_service.generate_template(entity),
                             f"{entity}-template.xlsx")

    bulk_import_bp.add_url_rule(f"/{entity}", f"import_{noun}", import_view, methods=["POST"])
    bulk_import_bp.add_url_rule(f"/{entity}/template", f"{noun}_template", template_view, methods=["GET"])


for _entity, (_import_permission, _read_permission) in _ENTITIES.items():
    _register(_entity, _import_permission, _read_permission)
