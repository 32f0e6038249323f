"""
CSI Portal
Report Service — filtered survey reports and department-head review.

Reports aggregate the numeric answers (Rating / MatrixLikert) of one
survey. "Before takeout" reports include TakenOut answers, "after
takeout" reports leave them out. A DepartmentHead only ever sees their
own department; the filter is forced, whatever the request says.
"""

import logging
from collections import defaultdict

from sqlalchemy import case, func, select

from csi_portal.core.exceptions import AuthorizationError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import ROLE_DEPARTMENT_HEAD
from csi_portal.models.org import (
    Application,
    BusinessUnit,
    Department,
    Division,
    Function,
    FunctionApplicationMapping,
)
from csi_portal.models.response import (
    TAKEOUT_ACTIVE,
    TAKEOUT_PROPOSED,
    TAKEOUT_TAKEN_OUT,
    QuestionResponse,
    Response,
)
from csi_portal.models.survey import Question, Survey
from csi_portal.utils.helpers import get_or_404, isoformat, parse_bool, parse_int

logger = logging.getLogger(__name__)

REPORT_FILTERS = ("business_unit_id", "division_id", "department_id", "application_id", "function_id")
DETAIL_LIMIT = 5000


def _round(value):
    return round(float(value), 2) if value is not None else None


# ═════════════════════════════════════════════════════════════════════════════
# Access
# ═════════════════════════════════════════════════════════════════════════════

def _department_of(user):
    if user.department_id is None:
        raise AuthorizationError("Department Head must be assigned to a department")
    return user.department_id


def validate_department_head_access(user, department_id) -> bool:
    """Non-DepartmentHead roles pass; a DepartmentHead must ask for their own department."""
    if user.role != ROLE_DEPARTMENT_HEAD:
        return True
    if _department_of(user) != parse_int(department_id):
        raise AuthorizationError("Department Head can only access their own department data")
    return True


def normalize_request(data: dict, user) -> dict:
    """Coerce ids, apply the DepartmentHead restriction and the takeout flag."""
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id:
        raise ValidationError("survey_id is required")
    request = {"survey_id": survey_id}
    for key in REPORT_FILTERS:
        request[key] = parse_int(data.get(key))
    request["include_taken_out"] = parse_bool(data.get("include_taken_out"), True)
    if user is not None and user.role == ROLE_DEPARTMENT_HEAD:
        request["department_id"] = _department_of(user)
    return request


def _conditions(request: dict) -> list:
    conds = [Response.survey_id == request["survey_id"]]
    for key, column in (
        ("business_unit_id", Response.business_unit_id),
        ("division_id", Response.division_id),
        ("department_id", Response.department_id),
        ("application_id", Response.application_id),
    ):
        if request.get(key):
            conds.append(column == request[key])
    if request.get("function_id"):
        conds.append(Response.application_id.in_(
            select(FunctionApplicationMapping.application_id)
            .where(FunctionApplicationMapping.function_id == request["function_id"])
        ))
    if not request.get("include_taken_out", True):
        conds.append(QuestionResponse.takeout_status != TAKEOUT_TAKEN_OUT)
    return conds


# ═════════════════════════════════════════════════════════════════════════════
# Report
# ═════════════════════════════════════════════════════════════════════════════

def _statistics(conds) -> dict:
    def count_of(status):
        return func.sum(case((QuestionResponse.takeout_status == status, 1), else_=0))

    row = (
        db.session.query(
            func.count(func.distinct(Response.id)),
            func.count(func.distinct(func.lower(Response.respondent_email))),
            func.avg(QuestionResponse.numeric_value),
            func.min(QuestionResponse.numeric_value),
            func.max(QuestionResponse.numeric_value),
            count_of(TAKEOUT_TAKEN_OUT),
            count_of(TAKEOUT_ACTIVE),
            count_of(TAKEOUT_PROPOSED),
        )
        .select_from(Response)
        .join(QuestionResponse, QuestionResponse.response_id == Response.id)
        .filter(*conds, QuestionResponse.numeric_value.isnot(None))
        .one()
    )
    return {
        "total_responses": row[0] or 0,
        "unique_respondents": row[1] or 0,
        "average_rating": _round(row[2]),
        "min_rating": _round(row[3]),
        "max_rating": _round(row[4]),
        "taken_out_count": int(row[5] or 0),
        "active_count": int(row[6] or 0),
        "proposed_count": int(row[7] or 0),
    }


def _details(conds) -> list[dict]:
    rows = (
        db.session.query(
            Response, QuestionResponse, Question,
            BusinessUnit.name, Division.name, Department.name, Application.name,
        )
        .join(QuestionResponse, QuestionResponse.response_id == Response.id)
        .join(Question, Question.id == QuestionResponse.question_id)
        .join(BusinessUnit, BusinessUnit.id == Response.business_unit_id)
        .join(Division, Division.id == Response.division_id)
        .join(Department, Department.id == Response.department_id)
        .join(Application, Application.id == Response.application_id)
        .filter(*conds)
        .order_by(Response.submitted_at.desc(), Response.id, Question.display_order)
        .limit(DETAIL_LIMIT)
        .all()
    )
    return [
        {
            "response_id": r.id,
            "question_response_id": qr.id,
            "respondent_email": r.respondent_email,
            "respondent_name": r.respondent_name,
            "submitted_at": isoformat(r.submitted_at),
            "business_unit_name": bu_name,
            "division_name": div_name,
            "department_name": dept_name,
            "application_name": app_name,
            "question_id": q.id,
            "prompt_text": q.prompt_text,
            "question_type": q.type,
            "text_value": qr.text_value,
            "numeric_value": qr.numeric_value,
            "date_value": isoformat(qr.date_value),
            "matrix_values": qr.matrix_values,
            "comment_value": qr.comment_value,
            "takeout_status": qr.takeout_status,
            "takeout_reason": qr.takeout_reason,
            "is_best_comment": qr.is_best_comment,
        }
        for r, qr, q, bu_name, div_name, dept_name, app_name in rows
    ]


def _distribution(conds) -> list[dict]:
    rows = (
        db.session.query(QuestionResponse.numeric_value, func.count(QuestionResponse.id))
        .select_from(Response)
        .join(QuestionResponse, QuestionResponse.response_id == Response.id)
        .filter(*conds, QuestionResponse.numeric_value.isnot(None))
        .group_by(QuestionResponse.numeric_value)
        .order_by(QuestionResponse.numeric_value)
        .all()
    )
    return [{"rating": rating, "count": count} for rating, count in rows]


def generate_report(data: dict, user=None) -> dict:
    request = normalize_request(data, user)
    survey = get_or_404(Survey, request["survey_id"], "Survey")
    logger.info("Generating report for survey %s (include_taken_out=%s)",
                survey.id, request["include_taken_out"], extra={"survey_id": survey.id})

    conds = _conditions(request)
    return {
        "survey": {
            "id": survey.id,
            "title": survey.title,
            "description": survey.description,
            "start_date": isoformat(survey.start_date),
            "end_date": isoformat(survey.end_date),
            "status": survey.status,
            "target_score": survey.target_score,
        },
        "filters": request,
        "statistics": _statistics(conds),
        "responses": _details(conds),
        "rating_distribution": _distribution(conds),
    }


def generate_before_takeout_report(data: dict, user=None) -> dict:
    return generate_report({**data, "include_taken_out": True}, user)


def generate_after_takeout_report(data: dict, user=None) -> dict:
    return generate_report({**data, "include_taken_out": False}, user)


def get_selection_list(user=None) -> list[dict]:
    """Surveys with their period and respondent count, newest first."""
    join_on = Response.survey_id == Survey.id
    if user is not None and user.role == ROLE_DEPARTMENT_HEAD:
        join_on = join_on & (Response.department_id == _department_of(user))

    rows = (
        db.session.query(Survey, func.count(func.distinct(Response.id)))
        .outerjoin(Response, join_on)
        .group_by(Survey.id)
        .order_by(Survey.start_date.desc())
        .all()
    )
    return [
        {
            "survey_id": s.id,
            "title": s.title,
            "description": s.description,
            "status": s.status,
            "period": f"{s.start_date:%d %b %Y} - {s.end_date:%d %b %Y}",
            "respondent_count": count,
            "has_generated_report": count > 0,
        }
        for s, count in rows
    ]


def get_takeout_comparison(survey_id, filters: dict | None = None, user=None) -> list[dict]:
    """Per-question average score with and without TakenOut answers.

    A DepartmentHead is limited to their own department.
    """
    get_or_404(Survey, survey_id, "Survey")
    filters = filters or {}
    request = {"survey_id": survey_id, "include_taken_out": True}
    for key in REPORT_FILTERS:
        request[key] = parse_int(filters.get(key))
    if user is not None and user.role == ROLE_DEPARTMENT_HEAD:
        request["department_id"] = _department_of(user)
    conds = _conditions(request)

    taken_out = QuestionResponse.takeout_status == TAKEOUT_TAKEN_OUT
    rows = (
        db.session.query(
            Question.id, Question.prompt_text, Question.type,
            func.count(QuestionResponse.id),
            func.sum(case((taken_out, 1), else_=0)),
            func.avg(QuestionResponse.numeric_value),
            func.avg(case((~taken_out, QuestionResponse.numeric_value), else_=None)),
        )
        .select_from(Question)
        .join(QuestionResponse, QuestionResponse.question_id == Question.id)
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(Question.survey_id == survey_id, *conds)
        .group_by(Question.id, Question.prompt_text, Question.type, Question.display_order)
        .order_by(Question.display_order)
        .all()
    )

    reasons = defaultdict(list)
    for qid, reason in (
        db.session.query(QuestionResponse.question_id, QuestionResponse.takeout_reason)
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(*conds, taken_out, QuestionResponse.takeout_reason.isnot(None))
        .order_by(QuestionResponse.id)
    ):
        reasons[qid].append(reason)

    return [
        {
            "question_id": qid,
            "question_text": text,
            "question_type": qtype,
            "total_responses": total,
            "takeout_count": int(takeouts or 0),
            "avg_score_before": _round(before),
            "avg_score_after": _round(after),
            "takeout_reasons": "; ".join(reasons.get(qid, [])),
        }
        for qid, text, qtype, total, takeouts, before, after in rows
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Department head review
# ═════════════════════════════════════════════════════════════════════════════

def _function_names_by_application() -> dict[int, str]:
    names = defaultdict(list)
    for app_id, name in (
        db.session.query(FunctionApplicationMapping.application_id, Function.name)
        .join(Function, Function.id == FunctionApplicationMapping.function_id)
        .order_by(Function.name)
    ):
        names[app_id].append(name)
    return {app_id: ", ".join(n) for app_id, n in names.items()}


def get_scores_by_function(department_id, survey_id) -> list[dict]:
    survey = get_or_404(Survey, survey_id, "Survey")
    target = survey.target_score or 0
    rows = (
        db.session.query(
            Function.id, Function.name,
            func.avg(QuestionResponse.numeric_value),
            func.count(func.distinct(Response.id)),
        )
        .select_from(Response)
        .join(QuestionResponse, QuestionResponse.response_id == Response.id)
        .join(FunctionApplicationMapping, FunctionApplicationMapping.application_id == Response.application_id)
        .join(Function, Function.id == FunctionApplicationMapping.function_id)
        .filter(
            Response.survey_id == survey.id,
            Response.department_id == department_id,
            QuestionResponse.numeric_value.isnot(None),
            QuestionResponse.takeout_status != TAKEOUT_TAKEN_OUT,
        )
        .group_by(Function.id, Function.name)
        .order_by(Function.name)
        .all()
    )
    result = []
    for fid, name, avg, count in rows:
        average = _round(avg) or 0
        result.append({
            "function_id": fid,
            "function_name": name,
            "average_score": average,
            "target_score": target,
            "status": "On Track" if average >= target else "Below Target",
            "response_count": count,
        })
    return result


def get_approved_takeouts(department_id, survey_id) -> list[dict]:
    get_or_404(Survey, survey_id, "Survey")
    functions = _function_names_by_application()
    rows = (
        QuestionResponse.query
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(
            Response.survey_id == survey_id,
            Response.department_id == department_id,
            QuestionResponse.takeout_status == TAKEOUT_TAKEN_OUT,
        )
        .order_by(QuestionResponse.reviewed_at.desc())
        .all()
    )
    return [
        {
            "question_response_id": qr.id,
            "question_text": qr.question.prompt_text,
            "score": qr.numeric_value,
            "comment": qr.comment_value,
            "takeout_reason": qr.takeout_reason,
            "respondent_email": qr.response.respondent_email,
            "application_name": qr.response.application.name,
            "function_name": functions.get(qr.response.application_id),
            "reviewed_by": qr.reviewer.display_name if qr.reviewer else None,
            "reviewed_at": isoformat(qr.reviewed_at),
        }
        for qr in rows
    ]


def _best_comments(department_id, survey_id) -> list[dict]:
    functions = _function_names_by_application()
    rows = (
        QuestionResponse.query
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(
            Response.survey_id == survey_id,
            Response.department_id == department_id,
            QuestionResponse.is_best_comment.is_(True),
        )
        .order_by(Response.submitted_at.desc())
        .all()
    )
    return [
        {
            "question_response_id": qr.id,
            "question_text": qr.question.prompt_text,
            "comment": qr.comment_value,
            "respondent_name": qr.response.respondent_name,
            "application_name": qr.response.application.name,
            "function_name": functions.get(qr.response.application_id),
            "feedback": [f.to_dict() for f in qr.feedback],
        }
        for qr in rows
    ]


def get_department_head_review(user, survey_id, department_id=None) -> dict:
    """Scores by function, approved takeouts and best comments for one department.

    A DepartmentHead always gets their own department; other roles must
    name one.
    """
    if user.role == ROLE_DEPARTMENT_HEAD:
        department_id = _department_of(user)
    department_id = parse_int(department_id)
    if not department_id:
        raise ValidationError("department_id is required")
    if not survey_id:
        raise ValidationError("survey_id is required")
    get_or_404(Department, department_id, "Department")

    return {
        "department_id": department_id,
        "survey_id": survey_id,
        "scores_by_function": get_scores_by_function(department_id, survey_id),
        "approved_takeouts": get_approved_takeouts(department_id, survey_id),
        "best_comments": _best_comments(department_id, survey_id),
    }
