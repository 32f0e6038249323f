"""
CSI Portal
Survey Service — survey lifecycle, look & feel, public links, scheduled
email operations and image uploads.

Date rule: ``end_date`` must be strictly after ``start_date`` on create and
on every partial update (the stored counterpart is used when only one of
the two is sent).
"""

import logging
import os
import re
import secrets
import time

from flask import current_app
from sqlalchemy import func, or_
from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import ROLE_ADMIN_EVENT, ROLE_SUPER_ADMIN, User
from csi_portal.models.response import Response
from csi_portal.models.scheduling import FREQUENCIES, ScheduledOperation
from csi_portal.models.survey import (
    SURVEY_STATUSES,
    Question,
    Survey,
    SurveyAdminAssignment,
    SurveyConfiguration,
)
from csi_portal.services.scheduled_operations import first_execution
from csi_portal.utils.helpers import (
    get_or_404,
    parse_bool,
    parse_id_list,
    parse_int,
    parse_time,
    require_datetime,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

ALLOWED_IMAGE_MIMETYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")
IMAGE_KINDS = {
    "hero": "hero_image_url",
    "logo": "logo_url",
    "background": "background_image_url",
}

_DEFAULT_STYLES = {
    "background_color": "#ffffff",
    "primary_color": "#007bff",
    "secondary_color": "#6c757d",
    "font_family": "Arial, sans-serif",
    "button_style": "rounded",
}
_BUTTON_RADIUS = {"rounded": "0.25rem", "pill": "50rem", "square": "0"}


def _base_url() -> str:
    return current_app.config.get("BASE_URL", "http://localhost:5000").rstrip("/")


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════

def validate_dates(start, end):
    """Parse both dates and require ``end > start``. Returns the pair."""
    start_dt = require_datetime(start, "start date")
    end_dt = require_datetime(end, "end date")
    if end_dt <= start_dt:
        raise ValidationError("End date must be after start date")
    return start_dt, end_dt


def _validate_title(title):
    title = (title or "").strip()
    if not title:
        raise ValidationError("Survey title is required", details={"title": "required"})
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Survey title must not exceed {MAX_TITLE_LENGTH} characters")
    return title


def _validate_target_score(value):
    if value in (None, ""):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Target score must be a number")
    if score < 0 or score > 10:
        raise ValidationError("Target score must be between 0 and 10")
    return score


def _validate_status(status):
    if status not in SURVEY_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(SURVEY_STATUSES)}")
    return status


def _resolve_admin_ids(data: dict) -> list[int] | None:
    """Merge ``assigned_admin_ids`` with the single ``assigned_admin_id``.

    Returns None when neither key is present (no change on update).
    """
    if "assigned_admin_ids" not in data and "assigned_admin_id" not in data:
        return None
    ids = parse_id_list(data.get("assigned_admin_ids"))
    single = parse_int(data.get("assigned_admin_id"))
    if single and single not in ids:
        ids.insert(0, single)

    for admin_id in ids:
        user = db.session.get(User, admin_id)
        if user is None or not user.is_active:
            raise ValidationError(f"Assigned admin {admin_id} not found or inactive")
        if user.role not in (ROLE_ADMIN_EVENT, ROLE_SUPER_ADMIN):
            raise ValidationError(f"User {admin_id} cannot be assigned as survey admin")
    return ids


def _set_admins(survey: Survey, admin_ids: list[int]):
    keep = set(admin_ids)
    for assignment in list(survey.admin_assignments):
        if assignment.admin_user_id not in keep:
            survey.admin_assignments.remove(assignment)
    existing = set(survey.assigned_admin_ids)
    for admin_id in admin_ids:
        if admin_id not in existing:
            survey.admin_assignments.append(SurveyAdminAssignment(admin_user_id=admin_id))
    survey.assigned_admin_id = admin_ids[0] if admin_ids else None


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════

def create_survey(data: dict, created_by: int | None = None) -> Survey:
    title = _validate_title(data.get("title"))
    if not data.get("start_date") or not data.get("end_date"):
        raise ValidationError("Start date and end date are required")
    start_dt, end_dt = validate_dates(data["start_date"], data["end_date"])

    survey = Survey(
        title=title,
        description=data.get("description"),
        start_date=start_dt,
        end_date=end_dt,
        status=_validate_status(data.get("status") or "Draft"),
        target_respondents=parse_int(data.get("target_respondents")),
        target_score=_validate_target_score(data.get("target_score")),
        duplicate_prevention_enabled=bool(parse_bool(data.get("duplicate_prevention_enabled"), True)),
        created_by=created_by,
        updated_by=created_by,
    )
    admin_ids = _resolve_admin_ids(data)
    if admin_ids:
        _set_admins(survey, admin_ids)
    survey.configuration = SurveyConfiguration(
        hero_title=title,
        hero_subtitle=data.get("description"),
        **_DEFAULT_STYLES,
    )
    db.session.add(survey)
    db.session.commit()
    logger.info("Survey created: %s (id=%s)", survey.title, survey.id)
    return survey


def update_survey(survey_id: int, data: dict, updated_by: int | None = None) -> Survey:
    survey = get_or_404(Survey, survey_id, "Survey")

    if "title" in data:
        survey.title = _validate_title(data["title"])
    if "description" in data:
        survey.description = data["description"]
    if "start_date" in data or "end_date" in data:
        start_dt, end_dt = validate_dates(
            data.get("start_date", survey.start_date),
            data.get("end_date", survey.end_date),
        )
        survey.start_date, survey.end_date = start_dt, end_dt
    if "status" in data:
        survey.status = _validate_status(data["status"])
    if "target_respondents" in data:
        survey.target_respondents = parse_int(data["target_respondents"])
    if "target_score" in data:
        survey.target_score = _validate_target_score(data["target_score"])
    if "duplicate_prevention_enabled" in data:
        survey.duplicate_prevention_enabled = bool(parse_bool(data["duplicate_prevention_enabled"], True))
    admin_ids = _resolve_admin_ids(data)
    if admin_ids is not None:
        _set_admins(survey, admin_ids)
    survey.updated_by = updated_by

    db.session.commit()
    return survey


def delete_survey(survey_id: int) -> None:
    survey = get_or_404(Survey, survey_id, "Survey")
    if Response.query.filter_by(survey_id=survey.id).first():
        raise ConflictError("Cannot delete survey with existing responses")
    db.session.delete(survey)
    db.session.commit()
    logger.info("Survey deleted: id=%s", survey_id)


def list_surveys(status=None, assigned_admin_id=None, search=None) -> list[dict]:
    counts = (
        db.session.query(Response.survey_id, func.count(Response.id).label("response_count"))
        .group_by(Response.survey_id)
        .subquery()
    )
    q = db.session.query(Survey, func.coalesce(counts.c.response_count, 0)).outerjoin(
        counts, counts.c.survey_id == Survey.id,
    )
    if status:
        q = q.filter(Survey.status == status)
    admin_id = parse_int(assigned_admin_id)
    if admin_id:
        q = q.filter(or_(
            Survey.assigned_admin_id == admin_id,
            Survey.admin_assignments.any(SurveyAdminAssignment.admin_user_id == admin_id),
        ))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Survey.title.ilike(pattern), Survey.description.ilike(pattern)))

    out = []
    for survey, count in q.order_by(Survey.created_at.desc(), Survey.id.desc()).all():
        d = survey.to_dict()
        d["response_count"] = count
        out.append(d)
    return out


def get_survey(survey_id: int) -> dict:
    survey = get_or_404(Survey, survey_id, "Survey")
    d = survey.to_dict(include_children=True)
    d["assigned_admins"] = [
        {"id": a.admin.id, "display_name": a.admin.display_name, "email": a.admin.email}
        for a in survey.admin_assignments if a.admin is not None
    ]
    d["response_count"] = Response.query.filter_by(survey_id=survey.id).count()
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Configuration & preview
# ═════════════════════════════════════════════════════════════════════════════

def _get_or_create_config(survey: Survey) -> SurveyConfiguration:
    if survey.configuration is None:
        survey.configuration = SurveyConfiguration()
        db.session.flush()
    return survey.configuration


def update_config(survey_id: int, fields: dict) -> SurveyConfiguration:
    survey = get_or_404(Survey, survey_id, "Survey")
    config = _get_or_create_config(survey)

    for name in SurveyConfiguration.EDITABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if name in SurveyConfiguration.COLOR_FIELDS and value not in (None, ""):
            if not _COLOR_RE.match(str(value)):
                raise ValidationError(f"{name} must be a hex color like #RRGGBB")
        if name in IMAGE_KINDS.values() and value not in (None, ""):
            if upload_path(str(value)) is None:
                raise ValidationError(f"{name} must point to an uploaded file")
        if name in SurveyConfiguration.BOOLEAN_FIELDS:
            value = bool(parse_bool(value, False))
        elif value == "":
            value = None
        setattr(config, name, value)

    db.session.commit()
    return config


def preview_styles(config: SurveyConfiguration | None) -> dict:
    """CSS variables and a ready-to-inject stylesheet for the survey form."""
    def pick(field):
        value = getattr(config, field, None) if config is not None else None
        return value or _DEFAULT_STYLES[field]

    background_image = getattr(config, "background_image_url", None) if config is not None else None
    styles = {
        "background_color": pick("background_color"),
        "background_image": f"url({background_image})" if background_image else "none",
        "primary_color": pick("primary_color"),
        "secondary_color": pick("secondary_color"),
        "font_family": pick("font_family"),
        "button_style": pick("button_style"),
    }
    styles["css_variables"] = {
        "--survey-background-color": styles["background_color"],
        "--survey-background-image": styles["background_image"],
        "--survey-primary-color": styles["primary_color"],
        "--survey-secondary-color": styles["secondary_color"],
        "--survey-font-family": styles["font_family"],
        "--survey-button-radius": _BUTTON_RADIUS.get(styles["button_style"], "0.25rem"),
    }
    styles["css_text"] = ":root { " + " ".join(
        f"{k}: {v};" for k, v in styles["css_variables"].items()
    ) + " }"
    return styles


def generate_preview(survey_id: int) -> dict:
    survey = get_or_404(Survey, survey_id, "Survey")
    questions = (
        Question.query.filter_by(survey_id=survey.id)
        .order_by(Question.page_number, Question.display_order)
        .all()
    )
    pages: dict[int, list] = {}
    for q in questions:
        pages.setdefault(q.page_number or 1, []).append(q.to_dict())

    config = survey.configuration
    return {
        "survey": survey.to_dict(),
        "configuration": config.to_dict() if config else None,
        "pages": pages,
        "total_pages": len(pages),
        "questions": [q.to_dict() for q in questions],
        "styles": preview_styles(config),
        "read_only": True,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Links
# ═════════════════════════════════════════════════════════════════════════════

def generate_link(survey_id: int, shorten: bool = False) -> dict:
    survey = get_or_404(Survey, survey_id, "Survey")
    survey.survey_link = f"{_base_url()}/survey/{survey.id}"
    if shorten:
        code = secrets.token_hex(16)[:8]
        survey.shortened_link = f"{_base_url()}/s/{code}"
    db.session.commit()
    logger.info("Survey link generated for survey %s", survey.id)
    return {"survey_link": survey.survey_link, "shortened_link": survey.shortened_link}


def resolve_short_code(code: str) -> Survey:
    survey = Survey.query.filter(
        Survey.shortened_link.endswith(f"/s/{code}", autoescape=True)
    ).first()
    if survey is None:
        raise NotFoundError("Short link", code)
    return survey


def generate_embed_code(survey_id: int) -> dict:
    survey = get_or_404(Survey, survey_id, "Survey")
    link = survey.survey_link or generate_link(survey.id)["survey_link"]
    title = (survey.title or "").replace('"', "&quot;")
    survey.embed_code = (
        f'<iframe src="{link}" width="100%" height="600px" '
        f'frameborder="0" title="{title}"></iframe>'
    )
    db.session.commit()
    return {"embed_code": survey.embed_code, "survey_link": link}


# ═════════════════════════════════════════════════════════════════════════════
# Scheduled operations
# ═════════════════════════════════════════════════════════════════════════════

def _schedule(operation_type: str, data: dict, created_by: int | None) -> ScheduledOperation:
    survey_id = parse_int(data.get("survey_id"))
    if not survey_id or not data.get("scheduled_date") or not data.get("email_template"):
        raise ValidationError("Survey ID, scheduled date, and email template are required")

    frequency = data.get("frequency") or "once"
    if frequency not in FREQUENCIES:
        raise ValidationError(f"Frequency must be one of: {', '.join(FREQUENCIES)}")

    day_of_week = parse_int(data.get("day_of_week"))
    if frequency == "weekly" and (day_of_week is None or not 0 <= day_of_week <= 6):
        raise ValidationError("Weekly scheduling requires day_of_week (0-6)")

    scheduled_time = data.get("scheduled_time") or None
    if scheduled_time is not None and parse_time(scheduled_time) is None:
        raise ValidationError("scheduled_time must be in HH:MM format")
    if frequency != "once" and not scheduled_time:
        raise ValidationError("Recurring schedules require scheduled_time in HH:MM format")

    scheduled_date = require_datetime(data["scheduled_date"], "scheduled date")

    survey = get_or_404(Survey, survey_id, "Survey")
    if operation_type == "Reminder" and survey.status != "Active":
        raise ValidationError("Reminders can only be scheduled for active surveys")

    target_criteria = data.get("target_criteria")
    if target_criteria is not None and not isinstance(target_criteria, dict):
        raise ValidationError("target_criteria must be an object")

    operation = ScheduledOperation(
        survey_id=survey.id,
        operation_type=operation_type,
        frequency=frequency,
        scheduled_date=scheduled_date,
        scheduled_time=parse_time(scheduled_time).strftime("%H:%M") if scheduled_time else None,
        day_of_week=day_of_week,
        email_template=data["email_template"],
        embed_cover=bool(parse_bool(data.get("embed_cover"), False)),
        target_criteria=target_criteria,
        status="Pending",
        created_by=created_by,
    )
    operation.next_execution_at = first_execution(operation)
    db.session.add(operation)
    db.session.commit()
    logger.info(
        "%s scheduled for survey %s, operation %s", operation_type, survey.id, operation.id,
        extra={"survey_id": survey.id, "operation_id": operation.id},
    )
    return operation


def schedule_blast(data: dict, created_by: int | None = None) -> ScheduledOperation:
    return _schedule("Blast", data, created_by)


def schedule_reminder(data: dict, created_by: int | None = None) -> ScheduledOperation:
    return _schedule("Reminder", data, created_by)


def list_scheduled_operations(survey_id: int, status=None, operation_type=None):
    get_or_404(Survey, survey_id, "Survey")
    q = ScheduledOperation.query.filter_by(survey_id=survey_id)
    if status:
        q = q.filter(ScheduledOperation.status == status)
    if operation_type:
        q = q.filter(ScheduledOperation.operation_type == operation_type)
    return q.order_by(ScheduledOperation.next_execution_at.desc(), ScheduledOperation.id.desc()).all()


def cancel_scheduled_operation(operation_id: int) -> ScheduledOperation:
    operation = get_or_404(ScheduledOperation, operation_id, "Scheduled operation")
    if operation.status == "Completed":
        raise ConflictError("Cannot cancel completed operation")
    if operation.status == "Cancelled":
        raise ConflictError("Operation is already cancelled")
    if operation.status == "Running":
        raise ConflictError("Cannot cancel operation that is currently running")

    operation.status = "Cancelled"
    operation.next_execution_at = None
    db.session.commit()
    logger.info("Scheduled operation %s cancelled", operation.id,
                extra={"operation_id": operation.id})
    return operation


# ═════════════════════════════════════════════════════════════════════════════
# Uploads
# ═════════════════════════════════════════════════════════════════════════════

def _validate_image(file_storage):
    if file_storage is None or not file_storage.filename:
        raise ValidationError("No file provided")
    if file_storage.mimetype not in ALLOWED_IMAGE_MIMETYPES:
        raise ValidationError("Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed")

    max_mb = current_app.config.get("MAX_FILE_SIZE_MB", 10)
    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    if size == 0:
        raise ValidationError("No file provided")
    if size > max_mb * 1024 * 1024:
        raise ValidationError(f"File size exceeds maximum allowed size of {max_mb}MB")


def unique_filename(original_name: str) -> str:
    _, ext = os.path.splitext(secure_filename(original_name) or "")
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{ext.lower()}"


def _save_upload(file_storage, subdirectory: str) -> str:
    _validate_image(file_storage)
    folder = os.path.join(current_app.config["UPLOAD_FOLDER"], subdirectory)
    os.makedirs(folder, exist_ok=True)
    filename = unique_filename(file_storage.filename)
    file_storage.save(os.path.join(folder, filename))
    logger.info("Stored upload %s/%s", subdirectory, filename)
    return f"{_base_url()}/uploads/{subdirectory}/{filename}"


def upload_path(url: str | None) -> str | None:
    """Local path of a file served from ``{BASE_URL}/uploads/``, or None.

    Anything that would resolve outside UPLOAD_FOLDER yields None.
    """
    prefix = f"{_base_url()}/uploads/"
    if not url or not url.startswith(prefix):
        return None
    relative = url[len(prefix):]
    if not relative:
        return None
    return safe_join(current_app.config["UPLOAD_FOLDER"], relative)


def _delete_upload(url: str | None) -> None:
    path = upload_path(url)
    if path is None:
        if url:
            logger.warning("Not deleting %s: not a file in the upload folder", url)
        return
    try:
        os.remove(path)
        logger.info("Deleted file: %s", path)
    except OSError as exc:
        logger.warning("Failed to delete file %s: %s", path, exc)


def upload_image(survey_id: int, kind: str, file_storage) -> SurveyConfiguration:
    """Store a hero/logo/background image and point the config at it."""
    if kind not in IMAGE_KINDS:
        raise ValidationError(f"Image kind must be one of: {', '.join(IMAGE_KINDS)}")
    survey = get_or_404(Survey, survey_id, "Survey")
    config = _get_or_create_config(survey)

    url = _save_upload(file_storage, "surveys")
    field = IMAGE_KINDS[kind]
    previous = getattr(config, field)
    setattr(config, field, url)
    db.session.commit()
    _delete_upload(previous)
    return config


def upload_question_image(question_id: int, file_storage) -> Question:
    question = get_or_404(Question, question_id, "Question")
    url = _save_upload(file_storage, "questions")
    previous = question.image_url
    question.image_url = url
    db.session.commit()
    _delete_upload(previous)
    return question
