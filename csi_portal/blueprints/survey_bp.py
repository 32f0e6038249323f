"""
CSI Portal
Survey blueprint — survey CRUD, configuration, links, scheduling, uploads.

Endpoints:
    GET    /api/v1/surveys                          ?status, ?assigned_admin_id, ?search
    GET    /api/v1/surveys/<id>
    POST   /api/v1/surveys
    PUT    /api/v1/surveys/<id>
    DELETE /api/v1/surveys/<id>
    PATCH  /api/v1/surveys/<id>/config
    GET    /api/v1/surveys/<id>/preview
    POST   /api/v1/surveys/<id>/link                {"shorten": bool}
    POST   /api/v1/surveys/<id>/embed
    POST   /api/v1/surveys/<id>/schedule-blast
    POST   /api/v1/surveys/<id>/schedule-reminder
    GET    /api/v1/surveys/<id>/scheduled-operations  ?status, ?operation_type
    DELETE /api/v1/surveys/scheduled-operations/<operation_id>
    POST   /api/v1/surveys/<id>/upload/<hero|logo|background>   multipart "image"
"""

from flask import Blueprint, g, request

from csi_portal.blueprints import json_body
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import survey_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import parse_bool

survey_bp = Blueprint("survey", __name__, url_prefix="/api/v1/surveys")


# ── CRUD ─────────────────────────────────────────────────────────────────────

@survey_bp.route("", methods=["GET"])
@require_permission("surveys:read")
def list_surveys():
    surveys = survey_service.list_surveys(
        status=request.args.get("status"),
        assigned_admin_id=request.args.get("assigned_admin_id"),
        search=request.args.get("search"),
    )
    return api_ok(surveys, total=len(surveys))


@survey_bp.route("/<int:survey_id>", methods=["GET"])
@require_permission("surveys:read")
def get_survey(survey_id):
    return api_ok(survey_service.get_survey(survey_id))


@survey_bp.route("", methods=["POST"])
@require_permission("surveys:create")
def create_survey():
    survey = survey_service.create_survey(json_body(), created_by=g.current_user.id)
    return api_ok(survey.to_dict(include_children=True), status=201)


@survey_bp.route("/<int:survey_id>", methods=["PUT"])
@require_permission("surveys:update")
def update_survey(survey_id):
    survey = survey_service.update_survey(survey_id, json_body(), updated_by=g.current_user.id)
    return api_ok(survey.to_dict(include_children=True))


@survey_bp.route("/<int:survey_id>", methods=["DELETE"])
@require_permission("surveys:delete")
def delete_survey(survey_id):
    survey_service.delete_survey(survey_id)
    return api_ok({"id": survey_id, "message": "Survey deleted"})


# ── Configuration, preview, links ────────────────────────────────────────────

@survey_bp.route("/<int:survey_id>/config", methods=["PATCH"])
@require_permission("surveys:update")
def update_config(survey_id):
    config = survey_service.update_config(survey_id, json_body())
    return api_ok(config.to_dict())


@survey_bp.route("/<int:survey_id>/preview", methods=["GET"])
@require_permission("surveys:read")
def preview(survey_id):
    return api_ok(survey_service.generate_preview(survey_id))


@survey_bp.route("/<int:survey_id>/link", methods=["POST"])
@require_permission("surveys:update")
def generate_link(survey_id):
    shorten = parse_bool(json_body().get("shorten"), False)
    return api_ok(survey_service.generate_link(survey_id, shorten=shorten))


@survey_bp.route("/<int:survey_id>/embed", methods=["POST"])
@require_permission("surveys:update")
def generate_embed(survey_id):
    return api_ok(survey_service.generate_embed_code(survey_id))


# ── Scheduling ───────────────────────────────────────────────────────────────

@survey_bp.route("/<int:survey_id>/schedule-blast", methods=["POST"])
@require_permission("surveys:update")
def schedule_blast(survey_id):
    data = {**json_body(), "survey_id": survey_id}
    operation = survey_service.schedule_blast(data, created_by=g.current_user.id)
    return api_ok(operation.to_dict(), status=201)


@survey_bp.route("/<int:survey_id>/schedule-reminder", methods=["POST"])
@require_permission("surveys:update")
def schedule_reminder(survey_id):
    data = {**json_body(), "survey_id": survey_id}
    operation = survey_service.schedule_reminder(data, created_by=g.current_user.id)
    return api_ok(operation.to_dict(), status=201)


@survey_bp.route("/<int:survey_id>/scheduled-operations", methods=["GET"])
@require_permission("surveys:read")
def list_scheduled_operations(survey_id):
    operations = survey_service.list_scheduled_operations(
        survey_id,
        status=request.args.get("status"),
        operation_type=request.args.get("operation_type"),
    )
    return api_ok([op.to_dict() for op in operations], total=len(operations))


@survey_bp.route("/scheduled-operations/<int:operation_id>", methods=["DELETE"])
@require_permission("surveys:update")
def cancel_scheduled_operation(operation_id):
    operation = survey_service.cancel_scheduled_operation(operation_id)
    return api_ok(operation.to_dict())


# ── Uploads ──────────────────────────────────────────────────────────────────

@survey_bp.route("/<int:survey_id>/upload/<kind>", methods=["POST"])
@require_permission("surveys:update")
def upload_image(survey_id, kind):
    config = survey_service.upload_image(survey_id, kind, request.files.get("image"))
    return api_ok(config.to_dict())
