"""
CSI Portal
Scheduling & email models.

Models:
    - ScheduledOperation: a survey blast or reminder, once or recurring
    - EmailLog: outbound email trail (also drives the 24 h resend guard)
"""

from csi_portal.models import db
from csi_portal.utils.helpers import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

OPERATION_TYPES = ("Blast", "Reminder")
FREQUENCIES = ("once", "daily", "weekly", "monthly")
OPERATION_STATUSES = ("Pending", "Running", "Completed", "Failed", "Cancelled")

EMAIL_TYPES = ("Blast", "Reminder", "Notification")
EMAIL_STATUSES = ("Sent", "Failed", "Pending")


class ScheduledOperation(db.Model):
    __tablename__ = "scheduled_operations"
    __table_args__ = (
        db.Index("idx_schedop_due", "status", "next_execution_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    operation_type = db.Column(db.String(20), nullable=False)
    frequency = db.Column(db.String(20), default="once", nullable=False)
    scheduled_date = db.Column(db.DateTime, nullable=False)
    scheduled_time = db.Column(db.String(5), nullable=True, comment="HH:MM")
    day_of_week = db.Column(db.Integer, nullable=True, comment="0 = Sunday … 6 = Saturday")
    email_template = db.Column(db.Text, nullable=False)
    embed_cover = db.Column(db.Boolean, default=False, nullable=False)
    target_criteria = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), default="Pending", nullable=False)
    next_execution_at = db.Column(db.DateTime, nullable=True)
    last_executed_at = db.Column(db.DateTime, nullable=True)
    execution_count = db.Column(db.Integer, default=0, nullable=False)
    error_message = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    survey = db.relationship("Survey", back_populates="scheduled_operations")

    @property
    def is_recurring(self) -> bool:
        return self.frequency != "once"

    def to_dict(self):
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "operation_type": self.operation_type,
            "frequency": self.frequency,
            "scheduled_date": isoformat(self.scheduled_date),
            "scheduled_time": self.scheduled_time,
            "day_of_week": self.day_of_week,
            "email_template": self.email_template,
            "embed_cover": self.embed_cover,
            "target_criteria": self.target_criteria,
            "status": self.status,
            "next_execution_at": isoformat(self.next_execution_at),
            "last_executed_at": isoformat(self.last_executed_at),
            "execution_count": self.execution_count,
            "error_message": self.error_message,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<ScheduledOperation {self.id} {self.operation_type}/{self.frequency} [{self.status}]>"


class EmailLog(db.Model):
    __tablename__ = "email_logs"
    __table_args__ = (
        db.Index("idx_email_recent", "recipient_email", "survey_id", "email_type", "sent_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    survey_id = db.Column(
        db.Integer, db.ForeignKey("surveys.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    recipient_email = db.Column(db.String(255), nullable=False)
    recipient_name = db.Column(db.String(200), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    email_type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), default="Pending", nullable=False)
    error_message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "email_type": self.email_type,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": isoformat(self.sent_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.id} to={self.recipient_email} [{self.status}]>"
