"""
CSI Portal
Survey domain models.

Models:
    - Survey: a survey event with a date window and lifecycle status
    - SurveyAdminAssignment: admins (AdminEvent) responsible for a survey
    - SurveyConfiguration: look & feel of the public survey form
    - Question: one prompt on the form; ``options`` holds type-specific JSON
"""

from csi_portal.models import db
from csi_portal.utils.helpers import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

SURVEY_STATUSES = ("Draft", "Active", "Closed", "Archived")

QUESTION_TYPES = (
    "HeroCover", "Text", "MultipleChoice", "Checkbox", "Dropdown",
    "MatrixLikert", "Rating", "Date", "Signature",
)
CHOICE_QUESTION_TYPES = {"MultipleChoice", "Checkbox", "Dropdown"}
SCORED_QUESTION_TYPES = {"Rating", "MatrixLikert"}
LAYOUT_ORIENTATIONS = ("vertical", "horizontal")


class Survey(db.Model):
    __tablename__ = "surveys"
    __table_args__ = (
        db.CheckConstraint("end_date > start_date", name="ck_survey_dates"),
        db.Index("idx_survey_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), default="Draft", nullable=False)
    assigned_admin_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    target_respondents = db.Column(db.Integer, nullable=True)
    target_score = db.Column(db.Float, nullable=True)
    survey_link = db.Column(db.String(500), nullable=True)
    shortened_link = db.Column(db.String(500), nullable=True)
    embed_code = db.Column(db.Text, nullable=True)
    duplicate_prevention_enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    configuration = db.relationship(
        "SurveyConfiguration", back_populates="survey", uselist=False,
        cascade="all, delete-orphan",
    )
    questions = db.relationship(
        "Question", back_populates="survey", cascade="all, delete-orphan",
        order_by="Question.display_order",
    )
    admin_assignments = db.relationship(
        "SurveyAdminAssignment", back_populates="survey", cascade="all, delete-orphan",
    )
    scheduled_operations = db.relationship(
        "ScheduledOperation", back_populates="survey", cascade="all, delete-orphan",
    )

    @property
    def assigned_admin_ids(self) -> list[int]:
        return [a.admin_user_id for a in self.admin_assignments]

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
            "status": self.status,
            "assigned_admin_id": self.assigned_admin_id,
            "assigned_admin_ids": self.assigned_admin_ids,
            "target_respondents": self.target_respondents,
            "target_score": self.target_score,
            "survey_link": self.survey_link,
            "shortened_link": self.shortened_link,
            "embed_code": self.embed_code,
            "duplicate_prevention_enabled": self.duplicate_prevention_enabled,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_children:
            d["configuration"] = self.configuration.to_dict() if self.configuration else None
            d["questions"] = [q.to_dict() for q in self.questions]
        return d

    def __repr__(self):
        return f"<Survey {self.id}: {self.title[:40]} [{self.status}]>"


class SurveyAdminAssignment(db.Model):
    __tablename__ = "survey_admin_assignments"
    __table_args__ = (
        db.UniqueConstraint("survey_id", "admin_user_id", name="uq_survey_admin"),
    )

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    admin_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    survey = db.relationship("Survey", back_populates="admin_assignments")
    admin = db.relationship("User")

    def __repr__(self):
        return f"<SurveyAdminAssignment s={self.survey_id} u={self.admin_user_id}>"


class SurveyConfiguration(db.Model):
    __tablename__ = "survey_configurations"

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    hero_title = db.Column(db.String(500))
    hero_subtitle = db.Column(db.String(500))
    hero_image_url = db.Column(db.String(500))
    logo_url = db.Column(db.String(500))
    background_image_url = db.Column(db.String(500))
    background_color = db.Column(db.String(7))
    primary_color = db.Column(db.String(7))
    secondary_color = db.Column(db.String(7))
    font_family = db.Column(db.String(100))
    button_style = db.Column(db.String(50))
    show_progress_bar = db.Column(db.Boolean, default=True, nullable=False)
    show_page_numbers = db.Column(db.Boolean, default=True, nullable=False)
    multi_page = db.Column(db.Boolean, default=False, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    survey = db.relationship("Survey", back_populates="configuration")

    EDITABLE_FIELDS = (
        "hero_title", "hero_subtitle", "hero_image_url", "logo_url",
        "background_image_url", "background_color", "primary_color",
        "secondary_color", "font_family", "button_style",
        "show_progress_bar", "show_page_numbers", "multi_page",
    )
    COLOR_FIELDS = ("background_color", "primary_color", "secondary_color")
    BOOLEAN_FIELDS = ("show_progress_bar", "show_page_numbers", "multi_page")

    def to_dict(self):
        d = {"id": self.id, "survey_id": self.survey_id}
        for field in self.EDITABLE_FIELDS:
            d[field] = getattr(self, field)
        d["updated_at"] = isoformat(self.updated_at)
        return d

    def __repr__(self):
        return f"<SurveyConfiguration survey={self.survey_id}>"


class Question(db.Model):
    __tablename__ = "questions"
    __table_args__ = (
        db.Index("idx_question_survey_order", "survey_id", "display_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False)
    prompt_text = db.Column(db.Text, nullable=True)
    subtitle = db.Column(db.String(500), nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    is_mandatory = db.Column(db.Boolean, default=False, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    page_number = db.Column(db.Integer, default=1, nullable=False)
    layout_orientation = db.Column(db.String(20), default="vertical", nullable=False)
    options = db.Column(db.JSON, nullable=True)
    comment_required_below_rating = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    survey = db.relationship("Survey", back_populates="questions")

    def to_dict(self):
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "type": self.type,
            "prompt_text": self.prompt_text,
            "subtitle": self.subtitle,
            "image_url": self.image_url,
            "is_mandatory": self.is_mandatory,
            "display_order": self.display_order,
            "page_number": self.page_number,
            "layout_orientation": self.layout_orientation,
            "options": self.options,
            "comment_required_below_rating": self.comment_required_below_rating,
        }

    def __repr__(self):
        return f"<Question {self.id} {self.type} survey={self.survey_id}>"
