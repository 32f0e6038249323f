"""
CSI Portal
Blueprint registry.
"""

import io

from flask import request, send_file

from csi_portal.core.exceptions import ValidationError
from csi_portal.utils.helpers import parse_bool, parse_int

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def json_body() -> dict:
    """Request JSON as a dict; a non-object body is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args(default_per_page=50):
    """``page`` / ``per_page`` query params as ints."""
    page = max(parse_int(request.args.get("page"), 1), 1)
    per_page = parse_int(request.args.get("per_page"), default_per_page)
    return page, per_page


def uploaded_workbook() -> tuple[bytes, dict]:
    """Bytes of the multipart ``file`` field plus the import flags from the form."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("File is required", details={"file": "required"})
    options = {
        "skip_duplicates": bool(parse_bool(request.form.get("skip_duplicates"), False)),
        "update_existing": bool(parse_bool(request.form.get("update_existing"), False)),
    }
    return upload.read(), options


def xlsx_download(content: bytes, filename: str):
    return send_file(io.BytesIO(content), mimetype=XLSX_MIMETYPE,
                     as_attachment=True, download_name=filename)


def register_blueprints(app):
    from csi_portal.blueprints.approval_bp import approval_bp
    from csi_portal.blueprints.audit_bp import audit_bp
    from csi_portal.blueprints.auth_bp import auth_bp
    from csi_portal.blueprints.bulk_import_bp import bulk_import_bp
    from csi_portal.blueprints.email_bp import email_bp
    from csi_portal.blueprints.health_bp import health_bp
    from csi_portal.blueprints.mapping_bp import mapping_bp
    from csi_portal.blueprints.master_data_bp import master_data_bp
    from csi_portal.blueprints.public_bp import public_bp
    from csi_portal.blueprints.question_bp import question_bp
    from csi_portal.blueprints.report_bp import report_bp
    from csi_portal.blueprints.response_bp import response_bp
    from csi_portal.blueprints.scheduler_bp import scheduler_bp
    from csi_portal.blueprints.survey_bp import survey_bp
    from csi_portal.blueprints.users_bp import users_bp

    for bp in (
        auth_bp, users_bp, master_data_bp, mapping_bp, survey_bp, question_bp,
        response_bp, approval_bp, report_bp, email_bp, audit_bp, scheduler_bp,
        bulk_import_bp, health_bp, public_bp,
    ):
        app.register_blueprint(bp)
