"""
CSI Portal
Email blueprint — survey blasts, reminders and takeout notifications.

Endpoints (emails:send):
    POST /api/v1/emails/blast                       {survey_id, criteria?, template?, embed_cover?}
    POST /api/v1/emails/reminders                   {survey_id, template?, embed_cover?}
    POST /api/v1/emails/recipients                  {business_unit_ids?, division_ids?, department_ids?}
    GET  /api/v1/emails/non-respondents/<survey_id>
    POST /api/v1/emails/approval-notification
    POST /api/v1/emails/rejection-notification
    GET  /api/v1/emails/templates
    GET  /api/v1/emails/templates/<name>
"""

from flask import Blueprint

from csi_portal.blueprints import json_body
from csi_portal.core.exceptions import ExternalServiceError, ValidationError
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import email_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import parse_bool, parse_datetime, parse_int, utcnow

email_bp = Blueprint("email", __name__, url_prefix="/api/v1/emails")

_NOTIFICATION_FIELDS = ("recipient_email", "survey_title", "respondent_email")


def _survey_id(data):
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id:
        raise ValidationError("survey_id is required")
    return survey_id


def _delivered(log):
    if log.status == "Failed":
        raise ExternalServiceError(
            "Notification email could not be delivered",
            details={"email_log_id": log.id, "error": log.error_message},
        )
    return api_ok(log.to_dict())


def _notification_args(data, actor_field):
    missing = [f for f in _NOTIFICATION_FIELDS + (actor_field,) if not data.get(f)]
    if missing:
        raise ValidationError("Missing required fields", details={"fields": missing})
    return {
        "recipient_email": data["recipient_email"],
        "recipient_name": data.get("recipient_name"),
        "survey_title": data["survey_title"],
        "respondent_email": data["respondent_email"],
        "question_text": data.get("question_text"),
        "reason": data.get("reason"),
        actor_field: data[actor_field],
        "decided_at": parse_datetime(data.get("decided_at")) or utcnow(),
    }


@email_bp.route("/blast", methods=["POST"])
@require_permission("emails:send")
def send_blast():
    data = json_body()
    result = email_service.send_survey_blast(
        _survey_id(data),
        criteria=data.get("criteria"),
        template=data.get("template"),
        embed_cover=parse_bool(data.get("embed_cover"), False),
    )
    return api_ok(result)


@email_bp.route("/reminders", methods=["POST"])
@require_permission("emails:send")
def send_reminders():
    data = json_body()
    result = email_service.send_reminders(
        _survey_id(data),
        template=data.get("template"),
        embed_cover=parse_bool(data.get("embed_cover"), False),
    )
    return api_ok(result)


@email_bp.route("/recipients", methods=["POST"])
@require_permission("emails:send")
def target_recipients():
    recipients = email_service.get_target_recipients(json_body())
    return api_ok(recipients, total=len(recipients))


@email_bp.route("/non-respondents/<int:survey_id>", methods=["GET"])
@require_permission("emails:send")
def non_respondents(survey_id):
    rows = email_service.get_non_respondents(survey_id)
    return api_ok(rows, total=len(rows))


@email_bp.route("/approval-notification", methods=["POST"])
@require_permission("emails:send")
def approval_notification():
    log = email_service.send_approval_notification(**_notification_args(json_body(), "approver_name"))
    return _delivered(log)


@email_bp.route("/rejection-notification", methods=["POST"])
@require_permission("emails:send")
def rejection_notification():
    log = email_service.send_rejection_notification(**_notification_args(json_body(), "rejector_name"))
    return _delivered(log)


@email_bp.route("/templates", methods=["GET"])
@require_permission("emails:send")
def list_templates():
    return api_ok(email_service.list_templates())


@email_bp.route("/templates/<name>", methods=["GET"])
@require_permission("emails:send")
def template_preview(name):
    return api_ok(email_service.get_template_preview(name))
