"""
CSI Portal
Approval blueprint — takeout proposals, decisions, best comments.

Endpoints:
    POST   /api/v1/approvals/propose-takeout          {response_id, question_id, reason}
    DELETE /api/v1/approvals/propose-takeout          {response_id, question_id}  — cancel
    POST   /api/v1/approvals/bulk-propose-takeout     {items: [{response_id, question_id}], reason}
    POST   /api/v1/approvals/approve                  {response_id, question_id, reason?}
    POST   /api/v1/approvals/reject                   {response_id, question_id, reason}
    POST   /api/v1/approvals/bulk-approve             {items, reason?}
    POST   /api/v1/approvals/bulk-reject              {items, reason}
    GET    /api/v1/approvals/pending                  ?survey_id, ?function_id
    GET    /api/v1/approvals/proposed                 ?survey_id, ?application_id, ?department_id, ?function_id, ?status
    GET    /api/v1/approvals/history/<qr_id>
    GET    /api/v1/approvals/statistics/<survey_id>
    GET    /api/v1/approvals/respondents              ?survey_id, ?duplicate_filter, ?application_id, ?department_id

    POST   /api/v1/approvals/best-comments            {question_response_id}
    DELETE /api/v1/approvals/best-comments/<qr_id>
    GET    /api/v1/approvals/best-comments            ?survey_id, ?application_id, ?department_id, ?function_id
    POST   /api/v1/approvals/best-comments/feedback   {question_response_id, feedback_text}
"""

from flask import Blueprint, g, request

from csi_portal.blueprints import json_body
from csi_portal.middleware.permission_required import require_permission
from csi_portal.services import approval_service
from csi_portal.utils.errors import api_ok
from csi_portal.utils.helpers import parse_int

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1/approvals")


def _ids(data):
    return parse_int(data.get("response_id")), parse_int(data.get("question_id"))


# ── Proposals ────────────────────────────────────────────────────────────────

@approval_bp.route("/propose-takeout", methods=["POST"])
@require_permission("responses:propose-takeout")
def propose_takeout():
    data = json_body()
    qr = approval_service.propose_takeout(*_ids(data), data.get("reason"), g.current_user.id)
    return api_ok(qr.to_dict())


@approval_bp.route("/propose-takeout", methods=["DELETE"])
@require_permission("responses:propose-takeout")
def cancel_proposal():
    data = json_body() or request.args
    qr = approval_service.cancel_proposal(*_ids(data), g.current_user.id)
    return api_ok(qr.to_dict())


@approval_bp.route("/bulk-propose-takeout", methods=["POST"])
@require_permission("responses:propose-takeout")
def bulk_propose():
    data = json_body()
    return api_ok(approval_service.bulk_propose(data.get("items"), data.get("reason"), g.current_user.id))


# ── Decisions ────────────────────────────────────────────────────────────────

@approval_bp.route("/approve", methods=["POST"])
@require_permission("approvals:approve")
def approve():
    data = json_body()
    qr = approval_service.approve_takeout(*_ids(data), g.current_user.id, data.get("reason"))
    return api_ok(qr.to_dict())


@approval_bp.route("/reject", methods=["POST"])
@require_permission("approvals:reject")
def reject():
    data = json_body()
    qr = approval_service.reject_takeout(*_ids(data), g.current_user.id, data.get("reason"))
    return api_ok(qr.to_dict())


@approval_bp.route("/bulk-approve", methods=["POST"])
@require_permission("approvals:approve")
def bulk_approve():
    data = json_body()
    return api_ok(approval_service.bulk_approve(data.get("items"), g.current_user.id, data.get("reason")))


@approval_bp.route("/bulk-reject", methods=["POST"])
@require_permission("approvals:reject")
def bulk_reject():
    data = json_body()
    return api_ok(approval_service.bulk_reject(data.get("items"), g.current_user.id, data.get("reason")))


# ── Queries ──────────────────────────────────────────────────────────────────

@approval_bp.route("/pending", methods=["GET"])
@require_permission("approvals:read")
def pending():
    rows = approval_service.get_pending_approvals(
        g.current_user.id,
        survey_id=parse_int(request.args.get("survey_id")),
        function_id=parse_int(request.args.get("function_id")),
    )
    return api_ok(rows, total=len(rows))


@approval_bp.route("/proposed", methods=["GET"])
@require_permission("approvals:read")
def proposed():
    rows = approval_service.get_proposed_takeouts(request.args.to_dict())
    return api_ok(rows, total=len(rows))


@approval_bp.route("/history/<int:question_response_id>", methods=["GET"])
@require_permission("approvals:read")
def history(question_response_id):
    return api_ok(approval_service.get_approval_history(question_response_id))


@approval_bp.route("/statistics/<int:survey_id>", methods=["GET"])
@require_permission("approvals:read")
def statistics(survey_id):
    return api_ok(approval_service.get_approval_statistics(survey_id))


@approval_bp.route("/respondents", methods=["GET"])
@require_permission("approvals:read")
def respondents():
    rows = approval_service.get_respondents(
        parse_int(request.args.get("survey_id")),
        duplicate_filter=request.args.get("duplicate_filter") or "all",
        application_id=parse_int(request.args.get("application_id")),
        department_id=parse_int(request.args.get("department_id")),
    )
    return api_ok(rows, total=len(rows))


# ── Best comments ────────────────────────────────────────────────────────────

@approval_bp.route("/best-comments", methods=["POST"])
@require_permission("best-comments:create")
def mark_best_comment():
    qr_id = parse_int(json_body().get("question_response_id"))
    return api_ok(approval_service.mark_best_comment(qr_id).to_dict())


@approval_bp.route("/best-comments/<int:question_response_id>", methods=["DELETE"])
@require_permission("best-comments:delete")
def unmark_best_comment(question_response_id):
    return api_ok(approval_service.unmark_best_comment(question_response_id).to_dict())


@approval_bp.route("/best-comments", methods=["GET"])
@require_permission("best-comments:read")
def list_best_comments():
    rows = approval_service.list_best_comments(
        parse_int(request.args.get("survey_id")), request.args.to_dict(),
    )
    return api_ok(rows, total=len(rows))


@approval_bp.route("/best-comments/feedback", methods=["POST"])
@require_permission("best-comments:feedback")
def best_comment_feedback():
    data = json_body()
    feedback = approval_service.submit_best_comment_feedback(
        parse_int(data.get("question_response_id")), g.current_user.id, data.get("feedback_text"),
    )
    return api_ok(feedback.to_dict(), status=201)
