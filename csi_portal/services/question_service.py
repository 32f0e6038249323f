"""
Question Service — survey form questions: add, edit, delete, reorder.

Type-specific ``options`` shapes:
    MultipleChoice / Checkbox / Dropdown   {"choices": ["A", "B", ...]}
    MatrixLikert                           {"rows": [...], "columns": [...]}
    Rating                                 {"min": 1, "max": 10}
"""

import logging

from sqlalchemy import func

from csi_portal.core.exceptions import ConflictError, ValidationError
from csi_portal.models import db
from csi_portal.models.response import QuestionResponse
from csi_portal.models.survey import (
    CHOICE_QUESTION_TYPES,
    LAYOUT_ORIENTATIONS,
    QUESTION_TYPES,
    Question,
    Survey,
)
from csi_portal.utils.helpers import get_or_404, parse_bool, parse_int

logger = logging.getLogger(__name__)

DEFAULT_RATING_MIN = 1
DEFAULT_RATING_MAX = 10


def _validate(data: dict, current: Question | None = None) -> dict:
    """Validate the merged (stored + incoming) question and return the
    normalised field values to write."""
    def pick(key, default=None):
        if key in data:
            return data[key]
        return getattr(current, key) if current is not None else default

    qtype = pick("type")
    if qtype not in QUESTION_TYPES:
        raise ValidationError(f"Question type must be one of: {', '.join(QUESTION_TYPES)}")

    orientation = pick("layout_orientation", "vertical") or "vertical"
    if orientation not in LAYOUT_ORIENTATIONS:
        raise ValidationError("layout_orientation must be 'vertical' or 'horizontal'")

    prompt = pick("prompt_text")
    prompt = prompt.strip() if isinstance(prompt, str) else prompt
    if qtype != "HeroCover" and not prompt:
        raise ValidationError("prompt_text is required", details={"prompt_text": "required"})

    options = pick("options") or {}
    if not isinstance(options, dict):
        raise ValidationError("options must be an object")

    if qtype in CHOICE_QUESTION_TYPES:
        choices = options.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValidationError(f"{qtype} questions require a non-empty options.choices list")

    if qtype == "MatrixLikert":
        rows, columns = options.get("rows"), options.get("columns")
        if not isinstance(rows, list) or not rows or not isinstance(columns, list) or not columns:
            raise ValidationError("MatrixLikert questions require options.rows and options.columns")

    threshold = parse_int(pick("comment_required_below_rating"))
    if qtype == "Rating":
        low = parse_int(options.get("min"), DEFAULT_RATING_MIN)
        high = parse_int(options.get("max"), DEFAULT_RATING_MAX)
        if low >= high:
            raise ValidationError("Rating options.min must be lower than options.max")
        options = {**options, "min": low, "max": high}
        if threshold is not None and not low <= threshold <= high:
            raise ValidationError(f"comment_required_below_rating must be between {low} and {high}")
    else:
        threshold = None

    page_number = parse_int(pick("page_number", 1), 1)
    if page_number < 1:
        raise ValidationError("page_number must be 1 or greater")

    return {
        "type": qtype,
        "prompt_text": prompt,
        "subtitle": pick("subtitle"),
        "image_url": pick("image_url"),
        "is_mandatory": bool(parse_bool(pick("is_mandatory", False), False)),
        "page_number": page_number,
        "layout_orientation": orientation,
        "options": options or None,
        "comment_required_below_rating": threshold,
    }


def list_by_survey(survey_id: int) -> list[Question]:
    get_or_404(Survey, survey_id, "Survey")
    return (
        Question.query.filter_by(survey_id=survey_id)
        .order_by(Question.display_order, Question.id)
        .all()
    )


def get_question(question_id: int) -> Question:
    return get_or_404(Question, question_id, "Question")


def add_question(survey_id: int, data: dict) -> Question:
    get_or_404(Survey, survey_id, "Survey")
    fields = _validate(data)

    display_order = parse_int(data.get("display_order"))
    if display_order is None:
        current_max = db.session.query(func.max(Question.display_order)).filter(
            Question.survey_id == survey_id,
        ).scalar()
        display_order = (current_max or 0) + 1

    question = Question(survey_id=survey_id, display_order=display_order, **fields)
    db.session.add(question)
    db.session.commit()
    logger.info("Question %s added to survey %s", question.id, survey_id,
                extra={"survey_id": survey_id})
    return question


def update_question(question_id: int, data: dict) -> Question:
    question = get_question(question_id)
    fields = _validate(data, current=question)
    for key, value in fields.items():
        setattr(question, key, value)
    if "display_order" in data:
        order = parse_int(data["display_order"])
        if order is None:
            raise ValidationError("display_order must be an integer")
        question.display_order = order
    db.session.commit()
    return question


def delete_question(question_id: int) -> None:
    question = get_question(question_id)
    if QuestionResponse.query.filter_by(question_id=question.id).first():
        raise ConflictError("Cannot delete question with existing responses")
    db.session.delete(question)
    db.session.commit()
    logger.info("Question %s deleted", question_id)


def reorder_questions(survey_id: int, items) -> list[Question]:
    """Apply ``[{question_id, display_order}]`` atomically."""
    get_or_404(Survey, survey_id, "Survey")
    if not isinstance(items, list) or not items:
        raise ValidationError("Question order list is required")

    by_id = {q.id: q for q in Question.query.filter_by(survey_id=survey_id).all()}
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object")
        qid = parse_int(item.get("question_id"))
        order = parse_int(item.get("display_order"))
        if qid is None or order is None:
            raise ValidationError("Each item requires question_id and display_order")
        if qid not in by_id:
            raise ValidationError(f"Question {qid} does not belong to survey {survey_id}")
        by_id[qid].display_order = order

    db.session.commit()
    return list_by_survey(survey_id)
