"""
CSI Portal
Response Service — public survey form, submission, and admin read access.

Submission payload::

    {
        "survey_id": 1,
        "respondent": {
            "email": "...", "name": "...",
            "business_unit_id": 1, "division_id": 2, "department_id": 3
        },
        "selected_application_ids": [4, 5],
        "responses": [
            {"question_id": 10, "value": {"numeric_value": 8, "comment_value": "..."}},
            ...
        ]
    }

One Response row is created per selected application; every answer is
copied under each of them with takeout status Active.
"""

from __future__ import annotations

import logging
from numbers import Number

from sqlalchemy import func

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.models import db
from csi_portal.models.org import (
    Application,
    ApplicationDepartmentMapping,
    BusinessUnit,
    Department,
    Division,
)
from csi_portal.models.response import (
    TAKEOUT_ACTIVE,
    TAKEOUT_PROPOSED,
    TAKEOUT_REJECTED,
    TAKEOUT_TAKEN_OUT,
    QuestionResponse,
    Response,
)
from csi_portal.models.survey import SCORED_QUESTION_TYPES, Question, Survey
from csi_portal.services import mapping_service
from csi_portal.utils.helpers import (
    get_or_404,
    parse_date,
    parse_datetime,
    parse_id_list,
    parse_int,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 200


def _normalize_email(email) -> str:
    return (email or "").strip().lower()


# ═════════════════════════════════════════════════════════════════════════════
# Public form
# ═════════════════════════════════════════════════════════════════════════════

def _available_survey(survey_id) -> Survey:
    survey = get_or_404(Survey, survey_id, "Survey")
    if survey.status != "Active":
        raise ValidationError("Survey is not currently active")
    now = utcnow()
    if now < survey.start_date or now > survey.end_date:
        raise ValidationError("Survey is not available at this time")
    return survey


def get_survey_form(survey_id: int) -> dict:
    survey = _available_survey(survey_id)
    questions = (
        Question.query.filter_by(survey_id=survey.id)
        .order_by(Question.display_order, Question.id)
        .all()
    )
    return {
        "survey": {
            "id": survey.id,
            "title": survey.title,
            "description": survey.description,
            "start_date": survey.start_date.isoformat(),
            "end_date": survey.end_date.isoformat(),
            "duplicate_prevention_enabled": survey.duplicate_prevention_enabled,
        },
        "configuration": survey.configuration.to_dict() if survey.configuration else None,
        "questions": [q.to_dict() for q in questions],
    }


def get_available_applications(survey_id: int, department_id: int) -> list[Application]:
    get_or_404(Survey, survey_id, "Survey")
    if not department_id:
        raise ValidationError("department_id is required")
    return mapping_service.applications_by_department(department_id, active_only=True)


def check_duplicate(survey_id: int, email: str, application_id: int) -> bool:
    """True iff a response already exists for (survey, email, application)."""
    if not survey_id or not email or not application_id:
        raise ValidationError("survey_id, email and application_id are required")
    q = Response.query.filter(
        Response.survey_id == survey_id,
        func.lower(func.trim(Response.respondent_email)) == _normalize_email(email),
        Response.application_id == application_id,
    )
    return db.session.query(q.exists()).scalar()


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════

def _is_number(value) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _matrix_average(matrix: dict):
    numbers = [v for v in matrix.values() if _is_number(v)]
    return round(sum(numbers) / len(numbers), 2) if numbers else None


def _check_answer(question: Question, value: dict):
    """Validate one answer against its question; returns column values."""
    qtype = question.type
    label = question.prompt_text or f"Question {question.id}"
    text = value.get("text_value")
    numeric = value.get("numeric_value")
    matrix = value.get("matrix_values")
    comment = value.get("comment_value")
    date_raw = value.get("date_value")

    if isinstance(text, list):
        text = "; ".join(str(t) for t in text if t not in (None, ""))
    if isinstance(text, str):
        text = text.strip() or None

    if numeric in ("", None):
        numeric = None
    elif not _is_number(numeric):
        try:
            numeric = float(numeric)
        except (TypeError, ValueError):
            raise ValidationError(f"Answer to '{label}' must be a number")

    date_value = None
    if date_raw not in (None, ""):
        date_value = parse_date(date_raw)
        if date_value is None:
            raise ValidationError(f"Answer to '{label}' must be a valid date")

    if matrix is not None and not isinstance(matrix, dict):
        raise ValidationError(f"Answer to '{label}' must be an object of row → value")

    if question.is_mandatory and qtype != "HeroCover":
        missing = {
            "Text": not text,
            "Signature": not text,
            "MultipleChoice": not text,
            "Dropdown": not text,
            "Checkbox": not text,
            "Rating": numeric is None,
            "Date": date_value is None,
            "MatrixLikert": not matrix,
        }.get(qtype, False)
        if missing:
            raise ValidationError(f"Question '{label}' is mandatory")

    if qtype == "Rating" and numeric is not None:
        options = question.options or {}
        low, high = options.get("min", 1), options.get("max", 10)
        if not low <= numeric <= high:
            raise ValidationError(f"Rating for '{label}' must be between {low} and {high}")
        threshold = question.comment_required_below_rating
        if threshold is not None and numeric < threshold and not (comment or "").strip():
            raise ValidationError(
                f"A comment is required for ratings below {threshold} on '{label}'"
            )

    if qtype == "MatrixLikert" and matrix and numeric is None:
        numeric = _matrix_average(matrix)

    return {
        "text_value": text,
        "numeric_value": numeric,
        "date_value": date_value,
        "matrix_values": matrix or None,
        "comment_value": (comment or "").strip() or None,
    }


def submit_response(data: dict, ip_address: str | None = None) -> dict:
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id:
        raise ValidationError("Survey ID is required")
    respondent = data.get("respondent") or {}
    email = (respondent.get("email") or "").strip()
    if not email:
        raise ValidationError("Respondent email is required")

    bu_id = parse_int(respondent.get("business_unit_id"))
    div_id = parse_int(respondent.get("division_id"))
    dept_id = parse_int(respondent.get("department_id"))
    if not bu_id or not div_id or not dept_id:
        raise ValidationError("Business unit, division and department are required")

    app_ids = parse_id_list(data.get("selected_application_ids"))
    if not app_ids:
        raise ValidationError("At least one application must be selected")
    answers = data.get("responses")
    if not isinstance(answers, list) or not answers:
        raise ValidationError("Survey responses are required")

    survey = _available_survey(survey_id)

    get_or_404(BusinessUnit, bu_id, "BusinessUnit")
    division = get_or_404(Division, div_id, "Division")
    department = get_or_404(Department, dept_id, "Department")
    if division.business_unit_id != bu_id or department.division_id != div_id:
        raise ValidationError("Department does not belong to the selected division and business unit")

    mapped = {
        m.application_id for m in ApplicationDepartmentMapping.query.filter(
            ApplicationDepartmentMapping.department_id == dept_id,
            ApplicationDepartmentMapping.application_id.in_(app_ids),
        )
    }
    unmapped = [a for a in app_ids if a not in mapped]
    if unmapped:
        raise ValidationError(
            "Selected applications are not available for this department",
            details={"application_ids": unmapped},
        )

    questions = {q.id: q for q in survey.questions}
    by_question: dict[int, dict] = {}
    for item in answers:
        if not isinstance(item, dict):
            raise ValidationError("Each response must be an object")
        qid = parse_int(item.get("question_id"))
        if qid not in questions:
            raise ValidationError(f"Question {item.get('question_id')} does not belong to this survey")
        value = item.get("value") or {}
        if not isinstance(value, dict):
            raise ValidationError("Each answer value must be an object",
                                  details={"question_id": qid})
        by_question[qid] = value

    values = {}
    for qid, question in questions.items():
        if question.type == "HeroCover":
            continue
        value = by_question.get(qid, {})
        checked = _check_answer(question, value)
        if qid in by_question:
            values[qid] = checked

    if survey.duplicate_prevention_enabled:
        for app_id in app_ids:
            if check_duplicate(survey.id, email, app_id):
                app_ = db.session.get(Application, app_id)
                raise ConflictError(
                    f"You have already submitted a response for application: {app_.name}"
                )

    responses = []
    for app_id in app_ids:
        response = Response(
            survey_id=survey.id,
            respondent_email=email,
            respondent_name=(respondent.get("name") or "").strip() or None,
            business_unit_id=bu_id,
            division_id=div_id,
            department_id=dept_id,
            application_id=app_id,
            ip_address=ip_address,
        )
        response.answers = [
            QuestionResponse(question_id=qid, takeout_status=TAKEOUT_ACTIVE, **cols)
            for qid, cols in values.items()
        ]
        db.session.add(response)
        responses.append(response)

    db.session.commit()
    response_ids = [r.id for r in responses]
    logger.info("Response submitted for survey %s: %s", survey.id, response_ids,
                extra={"survey_id": survey.id})
    return {"response_ids": response_ids, "message": "Survey response submitted successfully"}


# ═════════════════════════════════════════════════════════════════════════════
# Admin read access
# ═════════════════════════════════════════════════════════════════════════════

def list_responses(filters: dict, page: int = 1, per_page: int = 50) -> dict:
    q = Response.query
    for key, column in (
        ("survey_id", Response.survey_id),
        ("department_id", Response.department_id),
        ("application_id", Response.application_id),
        ("business_unit_id", Response.business_unit_id),
        ("division_id", Response.division_id),
    ):
        value = parse_int(filters.get(key))
        if value:
            q = q.filter(column == value)
    if filters.get("email"):
        q = q.filter(Response.respondent_email.ilike(f"%{filters['email'].strip()}%"))
    start = parse_datetime(filters.get("start_date"))
    if start:
        q = q.filter(Response.submitted_at >= start)
    end = parse_datetime(filters.get("end_date"))
    if end:
        q = q.filter(Response.submitted_at <= end)

    page = max(page or 1, 1)
    per_page = min(max(per_page or 50, 1), MAX_PER_PAGE)
    total = q.count()
    rows = (
        q.order_by(Response.submitted_at.desc(), Response.id.desc())
        .limit(per_page).offset((page - 1) * per_page).all()
    )
    return {"items": [r.to_dict() for r in rows], "total": total, "page": page, "per_page": per_page}


def get_response(response_id: int) -> dict:
    response = get_or_404(Response, response_id, "Response")
    d = response.to_dict(include_answers=True)
    prompts = {q.id: (q.prompt_text, q.type) for q in response.survey.questions}
    for answer in d["answers"]:
        prompt, qtype = prompts.get(answer["question_id"], (None, None))
        answer["prompt_text"] = prompt
        answer["question_type"] = qtype
    return d


def get_question_response(response_id: int, question_id: int) -> QuestionResponse:
    qr = QuestionResponse.query.filter_by(response_id=response_id, question_id=question_id).first()
    if qr is None:
        raise NotFoundError("QuestionResponse", f"{response_id}/{question_id}")
    return qr


def get_statistics(survey_id: int) -> dict:
    if not survey_id:
        raise ValidationError("Survey ID is required")
    get_or_404(Survey, survey_id, "Survey")

    total = Response.query.filter_by(survey_id=survey_id).count()

    by_department = (
        db.session.query(Department.id, Department.name, func.count(Response.id))
        .join(Response, Response.department_id == Department.id)
        .filter(Response.survey_id == survey_id)
        .group_by(Department.id, Department.name)
        .order_by(Department.name)
        .all()
    )
    by_application = (
        db.session.query(Application.id, Application.name, Application.code, func.count(Response.id))
        .join(Response, Response.application_id == Application.id)
        .filter(Response.survey_id == survey_id)
        .group_by(Application.id, Application.name, Application.code)
        .order_by(Application.name)
        .all()
    )
    average_ratings = (
        db.session.query(
            Question.id, Question.prompt_text,
            func.avg(QuestionResponse.numeric_value), func.count(QuestionResponse.id),
        )
        .join(QuestionResponse, QuestionResponse.question_id == Question.id)
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(
            Response.survey_id == survey_id,
            Question.type.in_(SCORED_QUESTION_TYPES),
            QuestionResponse.numeric_value.isnot(None),
            QuestionResponse.takeout_status == TAKEOUT_ACTIVE,
        )
        .group_by(Question.id, Question.prompt_text, Question.display_order)
        .order_by(Question.display_order)
        .all()
    )
    status_counts = dict(
        db.session.query(QuestionResponse.takeout_status, func.count(QuestionResponse.id))
        .join(Response, Response.id == QuestionResponse.response_id)
        .filter(Response.survey_id == survey_id)
        .group_by(QuestionResponse.takeout_status)
        .all()
    )

    return {
        "total_responses": total,
        "by_department": [
            {"department_id": i, "department_name": n, "response_count": c}
            for i, n, c in by_department
        ],
        "by_application": [
            {"application_id": i, "application_name": n, "application_code": code, "response_count": c}
            for i, n, code, c in by_application
        ],
        "average_ratings": [
            {"question_id": i, "question_text": t,
             "average_rating": round(float(avg), 2) if avg is not None else None,
             "response_count": c}
            for i, t, avg, c in average_ratings
        ],
        "takeout_statistics": {
            "active": status_counts.get(TAKEOUT_ACTIVE, 0),
            "proposed": status_counts.get(TAKEOUT_PROPOSED, 0),
            "taken_out": status_counts.get(TAKEOUT_TAKEN_OUT, 0),
            "rejected": status_counts.get(TAKEOUT_REJECTED, 0),
        },
    }


def get_organization_options() -> list[dict]:
    """Active business units → divisions → departments for the public form."""
    tree = []
    for bu in BusinessUnit.query.filter_by(is_active=True).order_by(BusinessUnit.name):
        divisions = []
        for div in bu.divisions.filter_by(is_active=True).order_by(Division.name):
            departments = [
                {"id": d.id, "code": d.code, "name": d.name}
                for d in div.departments.filter_by(is_active=True).order_by(Department.name)
            ]
            divisions.append({"id": div.id, "code": div.code, "name": div.name, "departments": departments})
        tree.append({"id": bu.id, "code": bu.code, "name": bu.name, "divisions": divisions})
    return tree
