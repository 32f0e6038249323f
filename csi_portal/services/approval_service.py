"""
CSI Portal
Approval Service — takeout workflow and best comments.

A takeout excludes one answer (QuestionResponse) from aggregate scoring.
Admins propose, IT leads approve or reject; every transition appends an
ApprovalHistory row in the same transaction as the status change.

    propose:  Active | Rejected   → ProposedTakeout
    cancel:   ProposedTakeout     → Active
    approve:  ProposedTakeout     → TakenOut
    reject:   ProposedTakeout     → Rejected

Approve and reject also write their AuditLog row before commit, then
notify the proposer by email. Notification failures never undo the
decision.
"""

from __future__ import annotations

import logging

from sqlalchemy import case, func, select

from csi_portal.core.exceptions import (
    ConflictError,
    CSIPortalError,
    NotFoundError,
    ValidationError,
)
from csi_portal.models import db
from csi_portal.models.auth import ROLE_ADMIN_EVENT, ROLE_SUPER_ADMIN, User
from csi_portal.models.org import Application, Department, Function, FunctionApplicationMapping
from csi_portal.models.response import (
    TAKEOUT_ACTIVE,
    TAKEOUT_PROPOSED,
    TAKEOUT_REJECTED,
    TAKEOUT_STATUSES,
    TAKEOUT_TAKEN_OUT,
    ApprovalHistory,
    BestCommentFeedback,
    QuestionResponse,
    Response,
)
from csi_portal.models.survey import Question, Survey
from csi_portal.services import audit_service
from csi_portal.utils.helpers import get_or_404, isoformat, parse_int, utcnow

logger = logging.getLogger(__name__)

DUPLICATE_FILTERS = ("all", "duplicate", "unique")


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _find(response_id, question_id) -> QuestionResponse:
    qr = QuestionResponse.query.filter_by(response_id=response_id, question_id=question_id).first()
    if qr is None:
        raise NotFoundError("QuestionResponse", f"{response_id}/{question_id}")
    return qr


def _history(qr: QuestionResponse, action: str, performed_by, reason, previous: str):
    db.session.add(ApprovalHistory(
        question_response_id=qr.id,
        action=action,
        performed_by=performed_by,
        reason=reason,
        previous_status=previous,
        new_status=qr.takeout_status,
    ))


def _row(qr: QuestionResponse) -> dict:
    """Takeout list row with the joined names reviewers need."""
    response = qr.response
    d = qr.to_dict()
    d.update({
        "question_text": qr.question.prompt_text if qr.question else None,
        "question_type": qr.question.type if qr.question else None,
        "survey_id": response.survey_id,
        "survey_title": response.survey.title if response.survey else None,
        "respondent_email": response.respondent_email,
        "respondent_name": response.respondent_name,
        "application_id": response.application_id,
        "application_name": response.application.name if response.application else None,
        "department_id": response.department_id,
        "department_name": response.department.name if response.department else None,
        "submitted_at": isoformat(response.submitted_at),
        "proposed_by_name": qr.proposer.display_name if qr.proposer else None,
        "reviewed_by_name": qr.reviewer.display_name if qr.reviewer else None,
    })
    return d


def _require_ids(response_id, question_id, actor, actor_label):
    if not response_id or not question_id or not actor:
        raise ValidationError(f"response_id, question_id and {actor_label} are required")


def _notify_proposer(qr: QuestionResponse, *, approved: bool, reviewer: User, reason):
    proposer = qr.proposer
    if proposer is None or not proposer.email:
        return
    from csi_portal.services import email_service

    kwargs = {
        "recipient_email": proposer.email,
        "recipient_name": proposer.display_name,
        "survey_title": qr.response.survey.title,
        "respondent_email": qr.response.respondent_email,
        "question_text": qr.question.prompt_text if qr.question else "",
        "reason": reason,
        "decided_at": qr.reviewed_at,
    }
    try:
        if approved:
            email_service.send_approval_notification(approver_name=reviewer.display_name, **kwargs)
        else:
            email_service.send_rejection_notification(rejector_name=reviewer.display_name, **kwargs)
    except Exception:
        logger.exception("Failed to send takeout notification for qr=%s", qr.id)


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def propose_takeout(response_id, question_id, reason, proposed_by) -> QuestionResponse:
    if not response_id or not question_id or not (reason or "").strip() or not proposed_by:
        raise ValidationError("response_id, question_id, reason and proposed_by are required")

    qr = _find(response_id, question_id)
    previous = qr.takeout_status
    if previous not in (TAKEOUT_ACTIVE, TAKEOUT_REJECTED):
        raise ConflictError(f"Cannot propose takeout for a response with status {previous}")

    qr.takeout_status = TAKEOUT_PROPOSED
    qr.takeout_reason = reason.strip()
    qr.proposed_by = proposed_by
    qr.proposed_at = utcnow()
    qr.reviewed_by = None
    qr.reviewed_at = None
    _history(qr, "Proposed", proposed_by, qr.takeout_reason, previous)
    db.session.commit()
    logger.info("Takeout proposed for qr=%s by user %s", qr.id, proposed_by)
    return qr


def cancel_proposal(response_id, question_id, cancelled_by) -> QuestionResponse:
    _require_ids(response_id, question_id, cancelled_by, "cancelled_by")
    qr = _find(response_id, question_id)
    if qr.takeout_status != TAKEOUT_PROPOSED:
        raise ValidationError("Only proposed takeouts can be cancelled")

    qr.takeout_status = TAKEOUT_ACTIVE
    qr.takeout_reason = None
    qr.proposed_by = None
    qr.proposed_at = None
    _history(qr, "Cancelled", cancelled_by, None, TAKEOUT_PROPOSED)
    db.session.commit()
    logger.info("Takeout proposal cancelled for qr=%s", qr.id)
    return qr


def _decide(response_id, question_id, reviewed_by, reason, *, approve: bool) -> QuestionResponse:
    qr = _find(response_id, question_id)
    if qr.takeout_status != TAKEOUT_PROPOSED:
        verb = "approved" if approve else "rejected"
        raise ValidationError(f"Only proposed takeouts can be {verb} (current status: {qr.takeout_status})")
    reviewer = get_or_404(User, reviewed_by, "User")

    now = utcnow()
    qr.takeout_status = TAKEOUT_TAKEN_OUT if approve else TAKEOUT_REJECTED
    qr.reviewed_by = reviewer.id
    qr.reviewed_at = now
    _history(qr, "Approved" if approve else "Rejected", reviewer.id, reason, TAKEOUT_PROPOSED)
    log_decision = audit_service.log_approve if approve else audit_service.log_reject
    log_decision(
        "QuestionResponse", qr.id,
        {"takeout_status": qr.takeout_status, "reason": reason},
        old_values={"takeout_status": TAKEOUT_PROPOSED},
        user_id=reviewer.id,
        username=reviewer.username,
        commit=False,
    )
    db.session.commit()
    logger.info("Takeout %s for qr=%s by user %s",
                "approved" if approve else "rejected", qr.id, reviewer.id)

    _notify_proposer(qr, approved=approve, reviewer=reviewer, reason=reason)
    return qr


def approve_takeout(response_id, question_id, reviewed_by, reason=None) -> QuestionResponse:
    _require_ids(response_id, question_id, reviewed_by, "reviewed_by")
    return _decide(response_id, question_id, reviewed_by, reason, approve=True)


def reject_takeout(response_id, question_id, reviewed_by, reason) -> QuestionResponse:
    _require_ids(response_id, question_id, reviewed_by, "reviewed_by")
    if not (reason or "").strip():
        raise ValidationError("A reason is required to reject a takeout")
    return _decide(response_id, question_id, reviewed_by, reason.strip(), approve=False)


def _bulk(items, action) -> dict:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list of {response_id, question_id}")

    results = {"success": [], "failed": []}
    for item in items:
        key = {
            "response_id": parse_int((item or {}).get("response_id")),
            "question_id": parse_int((item or {}).get("question_id")),
        }
        try:
            action(key["response_id"], key["question_id"])
            results["success"].append(key)
        except CSIPortalError as exc:
            db.session.rollback()
            results["failed"].append({**key, "error": exc.message})
    return results


def bulk_propose(items, reason, proposed_by) -> dict:
    if not (reason or "").strip() or not proposed_by:
        raise ValidationError("reason and proposed_by are required")
    return _bulk(items, lambda r, q: propose_takeout(r, q, reason, proposed_by))


def bulk_approve(items, reviewed_by, reason=None) -> dict:
    return _bulk(items, lambda r, q: approve_takeout(r, q, reviewed_by, reason))


def bulk_reject(items, reviewed_by, reason) -> dict:
    if not (reason or "").strip():
        raise ValidationError("A reason is required to reject a takeout")
    return _bulk(items, lambda r, q: reject_takeout(r, q, reviewed_by, reason))


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def _takeout_query():
    return (
        QuestionResponse.query
        .join(Response, Response.id == QuestionResponse.response_id)
        .join(Question, Question.id == QuestionResponse.question_id)
    )


def _function_filter(function_id):
    return Response.application_id.in_(
        select(FunctionApplicationMapping.application_id)
        .where(FunctionApplicationMapping.function_id == function_id)
    )


def get_pending_approvals(it_lead_user_id, survey_id=None, function_id=None) -> list[dict]:
    """Proposed takeouts for applications in functions the user leads.
    SuperAdmin and AdminEvent see every proposal."""
    if not it_lead_user_id:
        raise ValidationError("it_lead_user_id is required")
    user = get_or_404(User, it_lead_user_id, "User")

    q = _takeout_query().filter(QuestionResponse.takeout_status == TAKEOUT_PROPOSED)
    if user.role not in (ROLE_SUPER_ADMIN, ROLE_ADMIN_EVENT):
        led = (
            select(FunctionApplicationMapping.application_id)
            .join(Function, Function.id == FunctionApplicationMapping.function_id)
            .where(Function.it_dept_head_user_id == user.id)
        )
        q = q.filter(Response.application_id.in_(led))
    if survey_id:
        q = q.filter(Response.survey_id == survey_id)
    if function_id:
        q = q.filter(_function_filter(function_id))
    return [_row(qr) for qr in q.order_by(QuestionResponse.proposed_at.desc()).all()]


def get_proposed_takeouts(filters: dict) -> list[dict]:
    status = filters.get("status") or TAKEOUT_PROPOSED
    if status not in TAKEOUT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TAKEOUT_STATUSES)}")

    q = _takeout_query().filter(QuestionResponse.takeout_status == status)
    for key, column in (
        ("survey_id", Response.survey_id),
        ("application_id", Response.application_id),
        ("department_id", Response.department_id),
    ):
        value = parse_int(filters.get(key))
        if value:
            q = q.filter(column == value)
    function_id = parse_int(filters.get("function_id"))
    if function_id:
        q = q.filter(_function_filter(function_id))
    return [_row(qr) for qr in q.order_by(QuestionResponse.proposed_at.desc()).all()]


def get_approval_history(question_response_id) -> list[dict]:
    qr = get_or_404(QuestionResponse, question_response_id, "QuestionResponse")
    return [h.to_dict() for h in qr.history]


# ═════════════════════════════════════════════════════════════════════════════
# Best comments
# ═════════════════════════════════════════════════════════════════════════════

def mark_best_comment(question_response_id) -> QuestionResponse:
    qr = get_or_404(QuestionResponse, question_response_id, "QuestionResponse")
    if not (qr.comment_value or "").strip():
        raise ValidationError("Only answers with a comment can be marked as best comment")
    if qr.is_best_comment:
        raise ValidationError("Answer is already marked as best comment")
    qr.is_best_comment = True
    db.session.commit()
    return qr


def unmark_best_comment(question_response_id) -> QuestionResponse:
    qr = get_or_404(QuestionResponse, question_response_id, "QuestionResponse")
    if not qr.is_best_comment:
        raise ValidationError("Answer is not marked as best comment")
    qr.is_best_comment = False
    db.session.commit()
    return qr


def list_best_comments(survey_id=None, filters: dict | None = None) -> list[dict]:
    filters = filters or {}
    q = _takeout_query().filter(QuestionResponse.is_best_comment.is_(True))
    if survey_id:
        q = q.filter(Response.survey_id == survey_id)
    for key, column in (
        ("application_id", Response.application_id),
        ("department_id", Response.department_id),
    ):
        value = parse_int(filters.get(key))
        if value:
            q = q.filter(column == value)
    function_id = parse_int(filters.get("function_id"))
    if function_id:
        q = q.filter(_function_filter(function_id))

    rows = []
    for qr in q.order_by(Response.submitted_at.desc()).all():
        d = _row(qr)
        d["feedback"] = [f.to_dict() for f in qr.feedback]
        rows.append(d)
    return rows


def submit_best_comment_feedback(question_response_id, it_lead_user_id, feedback_text) -> BestCommentFeedback:
    if not question_response_id or not it_lead_user_id or not (feedback_text or "").strip():
        raise ValidationError("question_response_id, it_lead_user_id and feedback_text are required")
    qr = get_or_404(QuestionResponse, question_response_id, "QuestionResponse")
    if not qr.is_best_comment:
        raise ValidationError("Feedback can only be given on best comments")

    feedback = BestCommentFeedback.query.filter_by(
        question_response_id=qr.id, it_lead_user_id=it_lead_user_id,
    ).first()
    if feedback is None:
        feedback = BestCommentFeedback(question_response_id=qr.id, it_lead_user_id=it_lead_user_id)
        db.session.add(feedback)
    feedback.feedback_text = feedback_text.strip()
    feedback.updated_at = utcnow()
    db.session.commit()
    return feedback


# ═════════════════════════════════════════════════════════════════════════════
# Statistics & respondents
# ═════════════════════════════════════════════════════════════════════════════

def _status_counts():
    def count_of(status):
        return func.sum(case((QuestionResponse.takeout_status == status, 1), else_=0))
    return (
        count_of(TAKEOUT_ACTIVE).label("active"),
        count_of(TAKEOUT_PROPOSED).label("proposed_takeout"),
        count_of(TAKEOUT_TAKEN_OUT).label("taken_out"),
        count_of(TAKEOUT_REJECTED).label("rejected"),
        func.count(QuestionResponse.id).label("total"),
    )


def _counts_dict(row) -> dict:
    return {
        "active": int(row.active or 0),
        "proposed_takeout": int(row.proposed_takeout or 0),
        "taken_out": int(row.taken_out or 0),
        "rejected": int(row.rejected or 0),
        "total": int(row.total or 0),
    }


def get_approval_statistics(survey_id) -> dict:
    get_or_404(Survey, survey_id, "Survey")
    base = (
        db.session.query(*_status_counts())
        .select_from(QuestionResponse)
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(Response.survey_id == survey_id)
    )
    overall = _counts_dict(base.one())

    per_question = (
        db.session.query(Question.id, Question.prompt_text, *_status_counts())
        .select_from(QuestionResponse)
        .join(Response, Response.id == QuestionResponse.response_id)
        .join(Question, Question.id == QuestionResponse.question_id)
        .filter(Response.survey_id == survey_id)
        .group_by(Question.id, Question.prompt_text, Question.display_order)
        .order_by(Question.display_order)
        .all()
    )
    return {
        "overall": overall,
        "by_question": [
            {"question_id": row.id, "question_text": row.prompt_text, **_counts_dict(row)}
            for row in per_question
        ],
    }


def get_respondents(survey_id, duplicate_filter="all", application_id=None, department_id=None) -> list[dict]:
    if not survey_id:
        raise ValidationError("survey_id is required")
    if duplicate_filter not in DUPLICATE_FILTERS:
        raise ValidationError(f"duplicate_filter must be one of: {', '.join(DUPLICATE_FILTERS)}")

    duplicate_count = func.count(Response.id).over(
        partition_by=(func.lower(Response.respondent_email), Response.application_id),
    ).label("duplicate_count")
    q = (
        db.session.query(
            Response.id, Response.respondent_email, Response.respondent_name,
            Response.application_id, Application.name.label("application_name"),
            Response.department_id, Department.name.label("department_name"),
            Response.submitted_at, duplicate_count,
        )
        .join(Application, Application.id == Response.application_id)
        .join(Department, Department.id == Response.department_id)
        .filter(Response.survey_id == survey_id)
    )
    if application_id:
        q = q.filter(Response.application_id == application_id)
    if department_id:
        q = q.filter(Response.department_id == department_id)

    rows = []
    for r in q.order_by(Response.submitted_at.desc(), Response.id.desc()).all():
        if duplicate_filter == "duplicate" and r.duplicate_count <= 1:
            continue
        if duplicate_filter == "unique" and r.duplicate_count != 1:
            continue
        rows.append({
            "response_id": r.id,
            "respondent_email": r.respondent_email,
            "respondent_name": r.respondent_name,
            "application_id": r.application_id,
            "application_name": r.application_name,
            "department_id": r.department_id,
            "department_name": r.department_name,
            "submitted_at": isoformat(r.submitted_at),
            "duplicate_count": r.duplicate_count,
            "is_duplicate": r.duplicate_count > 1,
        })
    return rows
