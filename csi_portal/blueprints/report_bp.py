"""
CSI Portal
Report blueprint — survey reports, takeout comparison, department-head review.

Endpoints:
    GET  /api/v1/reports/selection-list
    POST /api/v1/reports/generate                      {survey_id, include_taken_out?, org filters}
    POST /api/v1/reports/before-takeout
    POST /api/v1/reports/after-takeout
    GET  /api/v1/reports/takeout-comparison/<survey_id>
    GET  /api/v1/reports/department-head-review/<survey_id>         ?department_id
    GET  /api/v1/reports/scores-by-function/<department_id>/<survey_id>
    GET  /api/v1/reports/approved-takeouts/<department_id>/<survey_id>
    POST /api/v1/reports/export/excel
    POST /api/v1/reports/export/pdf
"""

from flask import Blueprint, g, request, send_file

from csi_portal.blueprints import XLSX_MIMETYPE, json_body
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import export_service, report_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import parse_int

report_bp = Blueprint("report", __name__, url_prefix="/api/v1/reports")


@report_bp.route("/selection-list", methods=["GET"])
@require_permission("reports:read")
def selection_list():
    rows = report_service.get_selection_list(g.current_user)
    return api_ok(rows, total=len(rows))


@report_bp.route("/generate", methods=["POST"])
@require_permission("reports:read")
def generate():
    return api_ok(report_service.generate_report(json_body(), g.current_user))


@report_bp.route("/before-takeout", methods=["POST"])
@require_permission("reports:read")
def before_takeout():
    return api_ok(report_service.generate_before_takeout_report(json_body(), g.current_user))


@report_bp.route("/after-takeout", methods=["POST"])
@require_permission("reports:read")
def after_takeout():
    return api_ok(report_service.generate_after_takeout_report(json_body(), g.current_user))


@report_bp.route("/takeout-comparison/<int:survey_id>", methods=["GET"])
@require_permission("reports:read")
def takeout_comparison(survey_id):
    rows = report_service.get_takeout_comparison(survey_id, request.args.to_dict(), g.current_user)
    return api_ok(rows)


# ── Department head review ───────────────────────────────────────────────────

@report_bp.route("/department-head-review/<int:survey_id>", methods=["GET"])
@require_permission("reports:read")
def department_head_review(survey_id):
    review = report_service.get_department_head_review(
        g.current_user, survey_id, parse_int(request.args.get("department_id")),
    )
    return api_ok(review)


@report_bp.route("/scores-by-function/<int:department_id>/<int:survey_id>", methods=["GET"])
@require_permission("reports:read")
def scores_by_function(department_id, survey_id):
    report_service.validate_department_head_access(g.current_user, department_id)
    return api_ok(report_service.get_scores_by_function(department_id, survey_id))


@report_bp.route("/approved-takeouts/<int:department_id>/<int:survey_id>", methods=["GET"])
@require_permission("reports:read")
def approved_takeouts(department_id, survey_id):
    report_service.validate_department_head_access(g.current_user, department_id)
    return api_ok(report_service.get_approved_takeouts(department_id, survey_id))


# ── Exports ──────────────────────────────────────────────────────────────────

@report_bp.route("/export/excel", methods=["POST"])
@require_permission("reports:export")
def export_excel():
    buf, filename = export_service.export_excel(json_body(), g.current_user)
    return send_file(buf, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


@report_bp.route("/export/pdf", methods=["POST"])
@require_permission("reports:export")
def export_pdf():
    buf, filename = export_service.export_pdf(json_body(), g.current_user)
    return send_file(buf, mimetype="application/pdf", as_attachment=True, download_name=filename)
