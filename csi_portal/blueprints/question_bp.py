"""
CSI Portal
Question blueprint.

Endpoints:
    GET    /api/v1/questions/survey/<survey_id>
    POST   /api/v1/questions                      {"survey_id": ..., "type": ..., ...}
    PUT    /api/v1/questions/<id>
    DELETE /api/v1/questions/<id>
    PATCH  /api/v1/questions/reorder               {"survey_id": ..., "items": [{question_id, display_order}]}
    POST   /api/v1/questions/<id>/upload/image     multipart "image"
"""

from flask import Blueprint, request

from csi_portal.blueprints import json_body
from csi_portal.core.exceptions import ValidationError
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import question_service, survey_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import parse_int

question_bp = Blueprint("question", __name__, url_prefix="/api/v1/questions")


@question_bp.route("/survey/<int:survey_id>", methods=["GET"])
@require_permission("surveys:read")
def list_questions(survey_id):
    questions = question_service.list_by_survey(survey_id)
    return api_ok([q.to_dict() for q in questions], total=len(questions))


@question_bp.route("", methods=["POST"])
@require_permission("surveys:update")
def add_question():
    data = json_body()
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id:
        raise ValidationError("survey_id is required")
    question = question_service.add_question(survey_id, data)
    return api_ok(question.to_dict(), status=201)


@question_bp.route("/<int:question_id>", methods=["PUT"])
@require_permission("surveys:update")
def update_question(question_id):
    return api_ok(question_service.update_question(question_id, json_body()).to_dict())


@question_bp.route("/<int:question_id>", methods=["DELETE"])
@require_permission("surveys:update")
def delete_question(question_id):
    question_service.delete_question(question_id)
    return api_ok({"id": question_id, "message": "Question deleted"})


@question_bp.route("/reorder", methods=["PATCH"])
@require_permission("surveys:update")
def reorder_questions():
    data = json_body()
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id:
        raise ValidationError("survey_id is required")
    questions = question_service.reorder_questions(survey_id, data.get("items"))
    return api_ok([q.to_dict() for q in questions])


@question_bp.route("/<int:question_id>/upload/image", methods=["POST"])
@require_permission("surveys:update")
def upload_image(question_id):
    question = survey_service.upload_question_image(question_id, request.files.get("image"))
    return api_ok(question.to_dict())
