"""
Email API tests: blasts, reminders, non-respondents, notifications, templates.

SMTP is unset under TestingConfig, so every send is logged as Sent
without delivery.
"""

import smtplib
from datetime import timedelta

import pytest

from csi_portal.models import db
from csi_portal.models.auth import ROLE_DEPARTMENT_HEAD
from csi_portal.models.scheduling import EmailLog
from csi_portal.services.email_service import EmailService, send_rejection_notification
from csi_portal.utils.helpers import utcnow


@pytest.fixture()
def recipients(make_user, org):
    """Two department users in the survey's target department."""
    make_user("ann", ROLE_DEPARTMENT_HEAD, display_name="Ann", department_id=org["department_id"])
    make_user("ben", ROLE_DEPARTMENT_HEAD, display_name="Ben", department_id=org["department_id"])
    return {"department_ids": [org["department_id"]]}


def _blast(client, headers, survey, criteria, **extra):
    return client.post(
        "/api/v1/emails/blast",
        json={"survey_id": survey.id, "criteria": criteria, **extra},
        headers=headers,
    )


class TestBlast:
    def test_blast_to_department(self, client, admin_event, survey, recipients):
        res = _blast(client, admin_event, survey, recipients)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data == {"total": 2, "sent": 2, "failed": 0, "skipped": 0, "errors": []}

        logs = EmailLog.query.filter_by(email_type="Blast").all()
        assert {log.recipient_email for log in logs} == {"ann@example.com", "ben@example.com"}
        assert logs[0].subject == "Survey Invitation: IT Satisfaction 2026"
        assert logs[0].status == "Sent"

    def test_resend_guard_skips_recent_recipients(self, client, admin_event, survey, recipients):
        _blast(client, admin_event, survey, recipients)
        data = _blast(client, admin_event, survey, recipients).get_json()["data"]
        assert data["sent"] == 0
        assert data["skipped"] == 2

    def test_guard_window_expires(self, client, admin_event, survey, recipients):
        _blast(client, admin_event, survey, recipients)
        for log in EmailLog.query.all():
            log.sent_at = utcnow() - timedelta(hours=25)
        db.session.commit()
        data = _blast(client, admin_event, survey, recipients).get_json()["data"]
        assert data["sent"] == 2

    def test_invalid_address_skipped(self, client, admin_event, survey, make_user, org):
        make_user("broken", ROLE_DEPARTMENT_HEAD, email="not-an-address",
                  department_id=org["other_department_id"])
        data = _blast(
            client, admin_event, survey, {"department_ids": [org["other_department_id"]]},
        ).get_json()["data"]
        assert data["skipped"] == 1
        assert data["sent"] == 0

    def test_custom_template_body(self, client, admin_event, survey, recipients):
        res = _blast(client, admin_event, survey, recipients,
                     template="<p>Hello {recipient_name}, please answer.</p>")
        assert res.get_json()["data"]["sent"] == 2
        assert EmailLog.query.first().subject == "Survey Invitation: IT Satisfaction 2026"

    def test_no_recipients(self, client, admin_event, survey, org):
        data = _blast(client, admin_event, survey, {"division_ids": [999]}).get_json()["data"]
        assert data["total"] == 0

    def test_blast_requires_active_survey(self, client, admin_event, survey, recipients):
        survey.status = "Closed"
        db.session.commit()
        assert _blast(client, admin_event, survey, recipients).status_code == 400

    def test_blast_requires_survey_id(self, client, admin_event):
        assert client.post("/api/v1/emails/blast", json={}, headers=admin_event).status_code == 400

    def test_super_admin_cannot_send(self, client, super_admin, survey):
        assert _blast(client, super_admin, survey, {}).status_code == 403

    def test_recipients_preview(self, client, admin_event, recipients):
        res = client.post("/api/v1/emails/recipients", json=recipients, headers=admin_event)
        assert [r["name"] for r in res.get_json()["data"]] == ["Ann", "Ben"]


class TestReminders:
    def test_non_respondents_and_reminders(self, client, admin_event, survey, recipients, payload):
        _blast(client, admin_event, survey, recipients)
        client.post("/api/v1/responses", json=payload(email="ANN@example.com"))

        res = client.get(f"/api/v1/emails/non-respondents/{survey.id}", headers=admin_event)
        assert res.get_json()["data"] == [{"email": "ben@example.com", "name": "Ben"}]

        data = client.post(
            "/api/v1/emails/reminders", json={"survey_id": survey.id}, headers=admin_event,
        ).get_json()["data"]
        assert data["sent"] == 1
        reminder = EmailLog.query.filter_by(email_type="Reminder").one()
        assert reminder.recipient_email == "ben@example.com"
        assert reminder.subject == "Reminder: IT Satisfaction 2026 closes soon"

    def test_everyone_responded(self, client, admin_event, survey):
        data = client.post(
            "/api/v1/emails/reminders", json={"survey_id": survey.id}, headers=admin_event,
        ).get_json()["data"]
        assert data["message"] == "All recipients have responded"

    def test_ended_survey(self, client, admin_event, survey):
        survey.end_date = utcnow() - timedelta(hours=1)
        db.session.commit()
        data = client.post(
            "/api/v1/emails/reminders", json={"survey_id": survey.id}, headers=admin_event,
        ).get_json()["data"]
        assert data["message"] == "Survey has ended"


class TestNotifications:
    def test_approval_notification(self, client, admin_event):
        res = client.post(
            "/api/v1/emails/approval-notification",
            json={
                "recipient_email": "owner@example.com",
                "survey_title": "Pulse",
                "respondent_email": "jane@example.com",
                "approver_name": "IT Lead",
                "decided_at": "2026-10-01T10:00:00",
            },
            headers=admin_event,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["subject"] == "Takeout Approved - Pulse"
        assert data["email_type"] == "Notification"

    def test_rejection_missing_fields(self, client, admin_event):
        res = client.post(
            "/api/v1/emails/rejection-notification",
            json={"recipient_email": "owner@example.com"},
            headers=admin_event,
        )
        assert res.status_code == 400
        assert res.get_json()["error"]["details"]["fields"] == [
            "survey_title", "respondent_email", "rejector_name",
        ]

    def test_smtp_failure_logged(self, app, monkeypatch):
        def boom(**kwargs):
            raise smtplib.SMTPException("connection refused")

        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.test")
        monkeypatch.setattr(EmailService, "_send_smtp", staticmethod(boom))
        log = EmailService.send(to_email="x@example.com", subject="Hi", html_body="<p>x</p>")
        assert log.status == "Failed"
        assert "connection refused" in log.error_message

    def test_undelivered_notification_is_bad_gateway(self, client, admin_event, app, monkeypatch):
        def boom(**kwargs):
            raise smtplib.SMTPException("connection refused")

        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.test")
        monkeypatch.setattr(EmailService, "_send_smtp", staticmethod(boom))
        res = client.post(
            "/api/v1/emails/rejection-notification",
            json={
                "recipient_email": "owner@example.com",
                "survey_title": "Pulse",
                "respondent_email": "jane@example.com",
                "rejector_name": "IT Lead",
            },
            headers=admin_event,
        )
        assert res.status_code == 502
        error = res.get_json()["error"]
        assert error["code"] == "ERR_EXTERNAL_SERVICE"
        assert "connection refused" in error["details"]["error"]
        assert EmailLog.query.one().status == "Failed"


class TestTemplates:
    def test_list_templates(self, client, admin_event):
        res = client.get("/api/v1/emails/templates", headers=admin_event)
        assert res.get_json()["data"] == [
            "approval-notification", "rejection-notification", "survey-invitation", "survey-reminder",
        ]

    def test_template_preview(self, client, admin_event):
        data = client.get("/api/v1/emails/templates/survey-reminder", headers=admin_event).get_json()["data"]
        assert "{days_remaining}" in data["html"]

    def test_unknown_template(self, client, admin_event):
        assert client.get("/api/v1/emails/templates/nope", headers=admin_event).status_code == 404


@pytest.fixture()
def outbox(app, monkeypatch):
    """Route SMTP sends into a list of kwargs."""
    sent = []
    monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.test")
    monkeypatch.setattr(EmailService, "_send_smtp", staticmethod(lambda **kw: sent.append(kw)))
    return sent


class TestRendering:
    def test_custom_template_keeps_css(self, client, admin_event, survey, recipients, outbox):
        template = "<style>p {color: red}</style><p>Hello {recipient_name}, see {survey_link}</p>"
        res = _blast(client, admin_event, survey, recipients, template=template)
        assert res.status_code == 200
        assert res.get_json()["data"]["sent"] == 2

        html = outbox[0]["html_body"]
        assert "p {color: red}" in html
        assert "Hello Ann" in html
        assert f"/survey/{survey.id}" in html

    def test_custom_template_ignores_non_placeholder_braces(self, client, admin_event, survey,
                                                            recipients, outbox):
        res = _blast(client, admin_event, survey, recipients, template="<p>{0} {a.b} {x:>3} {}</p>")
        assert res.get_json()["data"]["sent"] == 2
        assert "{0} {a.b} {x:>3} {}" in outbox[0]["html_body"]

    def test_context_values_are_escaped(self, outbox):
        send_rejection_notification(
            recipient_email="owner@example.com",
            recipient_name="Owner",
            survey_title="Pulse <b>",
            respondent_email="jane@example.com",
            question_text="Speed & quality",
            reason="<script>alert(1)</script>",
            rejector_name="IT Lead",
            decided_at=utcnow(),
        )
        html = outbox[0]["html_body"]
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
        assert "Speed &amp; quality" in html
        assert "<script>" not in html
        assert outbox[0]["subject"] == "Takeout Rejected - Pulse <b>"
