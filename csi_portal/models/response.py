"""
CSI Portal
Response & takeout-approval models.

Models:
    - Response: one submission for one (survey, respondent, application)
    - QuestionResponse: one answer; carries the takeout workflow state
    - ApprovalHistory: append-only trail of takeout status transitions
    - BestCommentFeedback: IT-lead feedback on answers flagged as best comments

Takeout lifecycle::

    Active ──propose──▶ ProposedTakeout ──approve──▶ TakenOut
      ▲                    │    │
      └─────cancel─────────┘    └──reject──▶ Rejected ──propose──▶ …
"""

from csi_portal.models import db
from csi_portal.utils.helpers import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

TAKEOUT_ACTIVE = "Active"
TAKEOUT_PROPOSED = "ProposedTakeout"
TAKEOUT_TAKEN_OUT = "TakenOut"
TAKEOUT_REJECTED = "Rejected"
TAKEOUT_STATUSES = (TAKEOUT_ACTIVE, TAKEOUT_PROPOSED, TAKEOUT_TAKEN_OUT, TAKEOUT_REJECTED)

APPROVAL_ACTIONS = ("Proposed", "Approved", "Rejected", "Cancelled")


class Response(db.Model):
    __tablename__ = "responses"
    __table_args__ = (
        db.Index("idx_response_survey_email_app", "survey_id", "respondent_email", "application_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    respondent_email = db.Column(db.String(255), nullable=False)
    respondent_name = db.Column(db.String(200), nullable=True)
    business_unit_id = db.Column(db.Integer, db.ForeignKey("business_units.id"), nullable=False)
    division_id = db.Column(db.Integer, db.ForeignKey("divisions.id"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=False, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    survey = db.relationship("Survey")
    business_unit = db.relationship("BusinessUnit")
    division = db.relationship("Division")
    department = db.relationship("Department")
    application = db.relationship("Application")
    answers = db.relationship(
        "QuestionResponse", back_populates="response", cascade="all, delete-orphan",
    )

    def to_dict(self, include_answers=False):
        d = {
            "id": self.id,
            "survey_id": self.survey_id,
            "respondent_email": self.respondent_email,
            "respondent_name": self.respondent_name,
            "business_unit_id": self.business_unit_id,
            "business_unit_name": self.business_unit.name if self.business_unit else None,
            "division_id": self.division_id,
            "division_name": self.division.name if self.division else None,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "application_id": self.application_id,
            "application_name": self.application.name if self.application else None,
            "ip_address": self.ip_address,
            "submitted_at": isoformat(self.submitted_at),
        }
        if include_answers:
            d["answers"] = [a.to_dict() for a in self.answers]
        return d

    def __repr__(self):
        return f"<Response {self.id} survey={self.survey_id} app={self.application_id}>"


class QuestionResponse(db.Model):
    __tablename__ = "question_responses"
    __table_args__ = (
        db.UniqueConstraint("response_id", "question_id", name="uq_response_question"),
        db.Index("idx_qr_takeout_status", "takeout_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    response_id = db.Column(
        db.Integer, db.ForeignKey("responses.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    text_value = db.Column(db.Text, nullable=True)
    numeric_value = db.Column(db.Float, nullable=True)
    date_value = db.Column(db.Date, nullable=True)
    matrix_values = db.Column(db.JSON, nullable=True)
    comment_value = db.Column(db.Text, nullable=True)

    takeout_status = db.Column(db.String(20), default=TAKEOUT_ACTIVE, nullable=False)
    takeout_reason = db.Column(db.Text, nullable=True)
    proposed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    proposed_at = db.Column(db.DateTime, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    is_best_comment = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    response = db.relationship("Response", back_populates="answers")
    question = db.relationship("Question")
    proposer = db.relationship("User", foreign_keys=[proposed_by])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])
    history = db.relationship(
        "ApprovalHistory", back_populates="question_response",
        cascade="all, delete-orphan", order_by="ApprovalHistory.id",
    )
    feedback = db.relationship(
        "BestCommentFeedback", back_populates="question_response", cascade="all, delete-orphan",
    )

    @property
    def display_value(self):
        """Single printable value, in the precedence exports use."""
        if self.text_value:
            return self.text_value
        if self.numeric_value is not None:
            return self.numeric_value
        if self.date_value:
            return self.date_value.isoformat()
        if self.matrix_values:
            return ", ".join(f"{k}: {v}" for k, v in self.matrix_values.items())
        return ""

    def to_dict(self):
        return {
            "id": self.id,
            "response_id": self.response_id,
            "question_id": self.question_id,
            "text_value": self.text_value,
            "numeric_value": self.numeric_value,
            "date_value": isoformat(self.date_value),
            "matrix_values": self.matrix_values,
            "comment_value": self.comment_value,
            "takeout_status": self.takeout_status,
            "takeout_reason": self.takeout_reason,
            "proposed_by": self.proposed_by,
            "proposed_at": isoformat(self.proposed_at),
            "reviewed_by": self.reviewed_by,
            "reviewed_at": isoformat(self.reviewed_at),
            "is_best_comment": self.is_best_comment,
        }

    def __repr__(self):
        return f"<QuestionResponse {self.id} r={self.response_id} q={self.question_id} [{self.takeout_status}]>"


class ApprovalHistory(db.Model):
    __tablename__ = "approval_history"

    id = db.Column(db.Integer, primary_key=True)
    question_response_id = db.Column(
        db.Integer, db.ForeignKey("question_responses.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    action = db.Column(db.String(20), nullable=False)
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = db.Column(db.Text, nullable=True)
    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    performed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    question_response = db.relationship("QuestionResponse", back_populates="history")
    performer = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "question_response_id": self.question_response_id,
            "action": self.action,
            "performed_by": self.performed_by,
            "performed_by_name": self.performer.display_name if self.performer else None,
            "reason": self.reason,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "performed_at": isoformat(self.performed_at),
        }

    def __repr__(self):
        return f"<ApprovalHistory {self.id}: {self.action} qr={self.question_response_id}>"


class BestCommentFeedback(db.Model):
    __tablename__ = "best_comment_feedback"
    __table_args__ = (
        db.UniqueConstraint("question_response_id", "it_lead_user_id", name="uq_best_comment_feedback"),
    )

    id = db.Column(db.Integer, primary_key=True)
    question_response_id = db.Column(
        db.Integer, db.ForeignKey("question_responses.id", ondelete="CASCADE"), nullable=False,
    )
    it_lead_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    feedback_text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    question_response = db.relationship("QuestionResponse", back_populates="feedback")
    it_lead = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "question_response_id": self.question_response_id,
            "it_lead_user_id": self.it_lead_user_id,
            "it_lead_name": self.it_lead.display_name if self.it_lead else None,
            "feedback_text": self.feedback_text,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<BestCommentFeedback qr={self.question_response_id} lead={self.it_lead_user_id}>"
