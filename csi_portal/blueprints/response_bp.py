"""
CSI Portal
Response blueprint — public survey form and submission, admin read access.

Public (no token):
    GET  /api/v1/responses/organization                         — BU → division → department tree
    GET  /api/v1/responses/survey/<id>/form
    GET  /api/v1/responses/survey/<id>/applications?department_id=
    POST /api/v1/responses/check-duplicate                       {survey_id, email, application_id}
    POST /api/v1/responses                                       — submit

Admin (responses:read):
    GET  /api/v1/responses                                       ?survey_id, ?department_id, ... ?page, ?per_page
    GET  /api/v1/responses/<id>
    GET  /api/v1/responses/survey/<id>/statistics
"""

from flask import Blueprint, request

from csi_portal.blueprints import json_body, page_args
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import response_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import client_ip, parse_int

response_bp = Blueprint("response", __name__, url_prefix="/api/v1/responses")

_LIST_FILTERS = (
    "survey_id", "department_id", "application_id", "business_unit_id",
    "division_id", "email", "start_date", "end_date",
)


# ── Public ───────────────────────────────────────────────────────────────────

@response_bp.route("/organization", methods=["GET"])
def organization_options():
    return api_ok(response_service.get_organization_options())


@response_bp.route("/survey/<int:survey_id>/form", methods=["GET"])
def survey_form(survey_id):
    return api_ok(response_service.get_survey_form(survey_id))


@response_bp.route("/survey/<int:survey_id>/applications", methods=["GET"])
def available_applications(survey_id):
    apps = response_service.get_available_applications(
        survey_id, parse_int(request.args.get("department_id")),
    )
    return api_ok([a.to_dict() for a in apps])


@response_bp.route("/check-duplicate", methods=["POST"])
def check_duplicate():
    data = json_body()
    is_duplicate = response_service.check_duplicate(
        parse_int(data.get("survey_id")), data.get("email"), parse_int(data.get("application_id")),
    )
    return api_ok({"is_duplicate": is_duplicate})


@response_bp.route("", methods=["POST"])
def submit_response():
    result = response_service.submit_response(json_body(), ip_address=client_ip())
    return api_ok(result, status=201)


# ── Admin ────────────────────────────────────────────────────────────────────

@response_bp.route("", methods=["GET"])
@require_permission("responses:read")
def list_responses():
    page, per_page = page_args()
    filters = {key: request.args.get(key) for key in _LIST_FILTERS}
    result = response_service.list_responses(filters, page=page, per_page=per_page)
    return api_ok(
        result["items"], total=result["total"], page=result["page"], per_page=result["per_page"],
    )


@response_bp.route("/<int:response_id>", methods=["GET"])
@require_permission("responses:read")
def get_response(response_id):
    return api_ok(response_service.get_response(response_id))


@response_bp.route("/survey/<int:survey_id>/statistics", methods=["GET"])
@require_permission("responses:read")
def statistics(survey_id):
    return api_ok(response_service.get_statistics(survey_id))
