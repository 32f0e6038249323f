"""
CSI Portal
Email Service — templated SMTP sending, batches, survey blasts, reminders
and takeout decision notifications.

When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask config (MAIL_SERVER, MAIL_PORT, MAIL_USE_TLS, ...)
    - Falls back to logging-only mode when MAIL_SERVER is unset
    - All emails are recorded in EmailLog; the log also drives the 24 h
      resend guard for blasts and reminders

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use STARTTLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    EMAIL_BATCH_SIZE / EMAIL_BATCH_DELAY_SECONDS  batch pacing
"""

from __future__ import annotations

import logging
import math
import re
import smtplib
import time
from datetime import timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any

from flask import current_app

from csi_portal.core.exceptions import NotFoundError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import User
from csi_portal.models.response import Response
from csi_portal.models.scheduling import EmailLog
from csi_portal.models.survey import Survey
from csi_portal.utils.helpers import parse_id_list, utcnow

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RESEND_WINDOW_HOURS = 24


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e3a8a; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">CSI Portal</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            Customer Satisfaction Index Portal. Automated message.
        </p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "survey-invitation": {
        "subject": "Survey Invitation: {survey_title}",
        "html": _LAYOUT.replace("{body}", """
        {hero_cover}
        <p>Dear {recipient_name},</p>
        <p>You are invited to take part in <strong>{survey_title}</strong>.</p>
        <p style="color: #64748b;">{survey_description}</p>
        <p>The survey is open from {start_date} to {end_date}.</p>
        <p><a href="{survey_link}" style="background: #2563eb; color: white; padding: 10px 18px;
              border-radius: 4px; text-decoration: none;">Start the survey</a></p>
        """),
    },
    "survey-reminder": {
        "subject": "Reminder: {survey_title} closes soon",
        "html": _LAYOUT.replace("{body}", """
        {hero_cover}
        <p>Dear {recipient_name},</p>
        <p>We have not yet received your answers for <strong>{survey_title}</strong>.</p>
        <p>The survey closes on {end_date} ({days_remaining} day(s) remaining).</p>
        <p><a href="{survey_link}" style="background: #2563eb; color: white; padding: 10px 18px;
              border-radius: 4px; text-decoration: none;">Complete the survey</a></p>
        """),
    },
    "approval-notification": {
        "subject": "Takeout Approved - {survey_title}",
        "html": _LAYOUT.replace("{body}", """
        <p>Dear {recipient_name},</p>
        <p>Your takeout proposal for <strong>{survey_title}</strong> was approved by {approver_name}
           on {approval_date}.</p>
        <p>Respondent: {respondent_email}<br>Question: {question_text}</p>
        <p style="color: #64748b;">Reason: {approval_reason}</p>
        """),
    },
    "rejection-notification": {
        "subject": "Takeout Rejected - {survey_title}",
        "html": _LAYOUT.replace("{body}", """
        <p>Dear {recipient_name},</p>
        <p>Your takeout proposal for <strong>{survey_title}</strong> was rejected by {rejector_name}
           on {rejection_date}.</p>
        <p>Respondent: {respondent_email}<br>Question: {question_text}</p>
        <p style="color: #64748b;">Reason: {rejection_reason}</p>
        """),
    },
}


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


# Context values that are markup built here rather than user text
_RAW_HTML_KEYS = frozenset({"hero_cover"})
_PLACEHOLDER_RE = re.compile(r"(\{[A-Za-z_]\w*\})")


def _escape_custom_body(body: str) -> str:
    """Keep ``{name}`` placeholders and double every other brace.

    Custom bodies are free HTML, so CSS rules and stray braces must
    survive ``str.format_map``.
    """
    parts = _PLACEHOLDER_RE.split(body)
    return "".join(
        part if i % 2 else part.replace("{", "{{").replace("}", "}}")
        for i, part in enumerate(parts)
    )


def _html_context(context: dict[str, Any]) -> _SafeDict:
    return _SafeDict({
        key: value if key in _RAW_HTML_KEYS or not isinstance(value, str) else escape(value)
        for key, value in context.items()
    })


def get_template_preview(name: str) -> dict:
    template = _TEMPLATES.get(name)
    if template is None:
        raise NotFoundError("Email template", name)
    return {"name": name, "subject": template["subject"], "html": template["html"]}


def list_templates() -> list[str]:
    return sorted(_TEMPLATES)


def is_valid_email(address: str | None) -> bool:
    return bool(address) and bool(_EMAIL_RE.match(address))


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        email_type: str = "Notification",
        survey_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status 'Sent'
        to simulate sending without actual delivery. The log row is
        committed so the resend guard sees it immediately.
        """
        log = EmailLog(
            survey_id=survey_id,
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject[:500],
            email_type=email_type,
            status="Pending",
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "Sent"
            log.sent_at = utcnow()
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
        else:
            try:
                cls._send_smtp(to_email=to_email, to_name=to_name,
                               subject=subject, html_body=html_body)
                log.status = "Sent"
                log.sent_at = utcnow()
                logger.info("Email sent: to=%s subject='%s'", to_email, subject)
            except (smtplib.SMTPException, OSError) as exc:
                log.status = "Failed"
                log.error_message = str(exc)[:1000]
                logger.error("Email failed: to=%s error=%s", to_email, exc)

        db.session.commit()
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        email_type: str = "Notification",
        survey_id: int | None = None,
        fallback_template: str | None = None,
    ) -> EmailLog:
        """
        Send an email using a named template.

        An unknown *template_name* is treated as custom HTML body text
        (scheduled blasts store their own template); the subject then
        comes from *fallback_template*.
        """
        template = cls.get_template(template_name)
        if template is None:
            base = cls.get_template(fallback_template or "") or {"subject": "CSI Portal"}
            template = {
                "subject": base["subject"],
                "html": _LAYOUT.replace("{body}", _escape_custom_body(template_name)),
            }

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_html_context(context))
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            email_type=email_type,
            survey_id=survey_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


# ═══════════════════════════════════════════════════════════════════════════
#  Batching & resend guard
# ═══════════════════════════════════════════════════════════════════════════

def was_email_sent_recently(email: str, survey_id: int | None, email_type: str,
                            hours: int = RESEND_WINDOW_HOURS) -> bool:
    since = utcnow() - timedelta(hours=hours)
    q = EmailLog.query.filter(
        db.func.lower(EmailLog.recipient_email) == email.strip().lower(),
        EmailLog.email_type == email_type,
        EmailLog.status == "Sent",
        EmailLog.sent_at >= since,
    )
    if survey_id is not None:
        q = q.filter(EmailLog.survey_id == survey_id)
    return db.session.query(q.exists()).scalar()


def send_batch(messages: list[dict], batch_size: int | None = None,
               delay: float | None = None) -> dict:
    """
    Send ``messages`` (kwargs for ``EmailService.send_from_template``) in
    batches, pausing ``delay`` seconds between batches.

    Returns ``{total, sent, failed, errors}``.
    """
    cfg = current_app.config
    batch_size = batch_size or cfg.get("EMAIL_BATCH_SIZE", 50)
    delay = cfg.get("EMAIL_BATCH_DELAY_SECONDS", 1.0) if delay is None else delay

    results = {"total": len(messages), "sent": 0, "failed": 0, "errors": []}
    batches = math.ceil(len(messages) / batch_size) if messages else 0
    for index in range(batches):
        batch = messages[index * batch_size:(index + 1) * batch_size]
        logger.info("Sending email batch %d/%d (%d emails)", index + 1, batches, len(batch))
        for message in batch:
            log = EmailService.send_from_template(**message)
            if log.status == "Sent":
                results["sent"] += 1
            else:
                results["failed"] += 1
                results["errors"].append({"email": message["to_email"], "error": log.error_message})
        if delay and index < batches - 1:
            time.sleep(delay)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Survey blasts & reminders
# ═══════════════════════════════════════════════════════════════════════════

def _survey_link(survey: Survey) -> str:
    base = current_app.config.get("BASE_URL", "http://localhost:5000").rstrip("/")
    return survey.survey_link or f"{base}/survey/{survey.id}"


def _hero_cover(survey: Survey, embed_cover: bool) -> str:
    url = survey.configuration.hero_image_url if survey.configuration else None
    if not embed_cover or not url:
        return ""
    return f'<img src="{escape(url)}" alt="" style="width: 100%; border-radius: 4px; margin-bottom: 16px;">'


def get_target_recipients(criteria: dict | None) -> list[dict]:
    """Active users with an email, narrowed by org criteria (any level)."""
    criteria = criteria or {}
    q = User.query.filter(User.is_active.is_(True), User.email.isnot(None), User.email != "")
    bu_ids = parse_id_list(criteria.get("business_unit_ids"))
    div_ids = parse_id_list(criteria.get("division_ids"))
    dept_ids = parse_id_list(criteria.get("department_ids"))
    if bu_ids:
        q = q.filter(User.business_unit_id.in_(bu_ids))
    if div_ids:
        q = q.filter(User.division_id.in_(div_ids))
    if dept_ids:
        q = q.filter(User.department_id.in_(dept_ids))
    return [
        {"email": u.email, "name": u.display_name}
        for u in q.order_by(User.display_name).all()
    ]


def _empty_result(message: str | None = None) -> dict:
    result = {"total": 0, "sent": 0, "failed": 0, "skipped": 0, "errors": []}
    if message:
        result["message"] = message
    return result


def _filter_recipients(recipients, survey_id, email_type):
    kept, skipped = [], 0
    for recipient in recipients:
        if not is_valid_email(recipient["email"]):
            logger.warning("Invalid email address: %s", recipient["email"])
            skipped += 1
            continue
        if was_email_sent_recently(recipient["email"], survey_id, email_type):
            logger.info("Skipping %s - %s sent recently", recipient["email"], email_type.lower())
            skipped += 1
            continue
        kept.append(recipient)
    return kept, skipped


def send_survey_blast(survey_id: int, criteria: dict | None = None,
                      template: str | None = None, embed_cover: bool = False) -> dict:
    survey = db.session.get(Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey", survey_id)
    if survey.status != "Active":
        raise ValidationError("Survey blasts can only be sent for active surveys")

    recipients = get_target_recipients(criteria)
    if not recipients:
        logger.warning("No recipients found for survey blast", extra={"survey_id": survey_id})
        return _empty_result()

    kept, skipped = _filter_recipients(recipients, survey.id, "Blast")
    logger.info("Sending blast to %d recipients (%d skipped)", len(kept), skipped,
                extra={"survey_id": survey_id})

    context = {
        "survey_title": survey.title,
        "survey_description": survey.description or "",
        "survey_link": _survey_link(survey),
        "start_date": survey.start_date.strftime("%d %b %Y"),
        "end_date": survey.end_date.strftime("%d %b %Y"),
        "target_respondents": survey.target_respondents or "",
        "hero_cover": _hero_cover(survey, embed_cover),
    }
    messages = [
        {
            "to_email": r["email"],
            "to_name": r["name"],
            "template_name": template or "survey-invitation",
            "fallback_template": "survey-invitation",
            "context": {**context, "recipient_name": r["name"] or r["email"]},
            "email_type": "Blast",
            "survey_id": survey.id,
        }
        for r in kept
    ]
    result = send_batch(messages)
    result["total"] = len(recipients)
    result["skipped"] = skipped
    return result


def get_non_respondents(survey_id: int) -> list[dict]:
    """Blast recipients (Sent) with no response under the same email."""
    rows = (
        db.session.query(EmailLog.recipient_email, EmailLog.recipient_name)
        .filter(
            EmailLog.survey_id == survey_id,
            EmailLog.email_type == "Blast",
            EmailLog.status == "Sent",
        )
        .distinct()
        .all()
    )
    if not rows:
        return []

    responded = {
        (email or "").strip().lower()
        for (email,) in db.session.query(Response.respondent_email)
        .filter(Response.survey_id == survey_id).distinct()
    }
    seen, out = set(), []
    for email, name in rows:
        key = email.strip().lower()
        if key in responded or key in seen:
            continue
        seen.add(key)
        out.append({"email": email, "name": name})
    logger.info("Found %d non-respondents out of %d recipients", len(out), len(rows),
                extra={"survey_id": survey_id})
    return out


def send_reminders(survey_id: int, template: str | None = None, embed_cover: bool = False) -> dict:
    survey = db.session.get(Survey, survey_id)
    if survey is None:
        raise NotFoundError("Survey", survey_id)

    now = utcnow()
    if now > survey.end_date:
        logger.warning("Survey has already ended, skipping reminders", extra={"survey_id": survey_id})
        return _empty_result("Survey has ended")

    days_remaining = math.ceil((survey.end_date - now).total_seconds() / 86400)
    non_respondents = get_non_respondents(survey.id)
    if not non_respondents:
        return _empty_result("All recipients have responded")

    kept, skipped = _filter_recipients(non_respondents, survey.id, "Reminder")
    context = {
        "survey_title": survey.title,
        "survey_link": _survey_link(survey),
        "end_date": survey.end_date.strftime("%d %b %Y"),
        "days_remaining": days_remaining,
        "hero_cover": _hero_cover(survey, embed_cover),
    }
    messages = [
        {
            "to_email": r["email"],
            "to_name": r["name"],
            "template_name": template or "survey-reminder",
            "fallback_template": "survey-reminder",
            "context": {**context, "recipient_name": r["name"] or r["email"]},
            "email_type": "Reminder",
            "survey_id": survey.id,
        }
        for r in kept
    ]
    result = send_batch(messages)
    result["total"] = len(non_respondents)
    result["skipped"] = skipped
    return result


# ═══════════════════════════════════════════════════════════════════════════
#  Takeout decision notifications
# ═══════════════════════════════════════════════════════════════════════════

def send_approval_notification(*, recipient_email, recipient_name, survey_title,
                               respondent_email, question_text, reason,
                               approver_name, decided_at) -> EmailLog:
    return EmailService.send_from_template(
        to_email=recipient_email,
        to_name=recipient_name,
        template_name="approval-notification",
        context={
            "recipient_name": recipient_name or recipient_email,
            "survey_title": survey_title,
            "respondent_email": respondent_email,
            "question_text": question_text or "",
            "approval_reason": reason or "-",
            "approver_name": approver_name,
            "approval_date": decided_at.strftime("%d %b %Y %H:%M"),
        },
        email_type="Notification",
    )


def send_rejection_notification(*, recipient_email, recipient_name, survey_title,
                                respondent_email, question_text, reason,
                                rejector_name, decided_at) -> EmailLog:
    return EmailService.send_from_template(
        to_email=recipient_email,
        to_name=recipient_name,
        template_name="rejection-notification",
        context={
            "recipient_name": recipient_name or recipient_email,
            "survey_title": survey_title,
            "respondent_email": respondent_email,
            "question_text": question_text or "",
            "rejection_reason": reason or "-",
            "rejector_name": rejector_name,
            "rejection_date": decided_at.strftime("%d %b %Y %H:%M"),
        },
        email_type="Notification",
    )
