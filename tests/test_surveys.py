"""
Survey API tests.

Covers:
  - create / update date rules, title and target score validation
  - admin assignment and list filters
  - configuration, preview styles
  - survey link, short link redirect, embed code
  - scheduled blast / reminder creation and cancellation
  - image upload and serving
"""

import io
import os

import pytest

from csi_portal.models import db
from csi_portal.models.auth import ROLE_ADMIN_EVENT, ROLE_IT_LEAD
from csi_portal.models.survey import SurveyConfiguration


def _survey_body(**overrides):
    body = {
        "title": "Helpdesk Pulse",
        "description": "Quarterly pulse",
        "start_date": "2026-11-01T00:00:00",
        "end_date": "2026-11-30T00:00:00",
        "target_score": 8,
    }
    body.update(overrides)
    return body


def _create(client, headers, **overrides):
    res = client.post("/api/v1/surveys", json=_survey_body(**overrides), headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


class TestSurveyCRUD:
    def test_create_defaults(self, client, admin_event):
        data = _create(client, admin_event)
        assert data["status"] == "Draft"
        assert data["duplicate_prevention_enabled"] is True
        assert data["configuration"]["hero_title"] == "Helpdesk Pulse"
        assert data["configuration"]["primary_color"] == "#007bff"

    def test_end_must_follow_start(self, client, admin_event):
        res = client.post(
            "/api/v1/surveys",
            json=_survey_body(end_date="2026-10-01T00:00:00"),
            headers=admin_event,
        )
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "End date must be after start date"

    def test_partial_update_checks_stored_start(self, client, admin_event):
        survey = _create(client, admin_event)
        res = client.put(
            f"/api/v1/surveys/{survey['id']}", json={"end_date": "2026-10-15"}, headers=admin_event,
        )
        assert res.status_code == 400

    @pytest.mark.parametrize("overrides", [
        {"title": "  "},
        {"title": "x" * 501},
        {"target_score": 11},
        {"status": "Paused"},
        {"start_date": "not a date"},
    ])
    def test_create_validation(self, client, admin_event, overrides):
        res = client.post("/api/v1/surveys", json=_survey_body(**overrides), headers=admin_event)
        assert res.status_code == 400

    def test_assign_admins(self, client, admin_event, make_user):
        second = make_user("second", ROLE_ADMIN_EVENT)
        data = _create(client, admin_event, assigned_admin_ids=[second.id])
        assert data["assigned_admin_id"] == second.id

        res = client.get(f"/api/v1/surveys?assigned_admin_id={second.id}", headers=admin_event)
        assert res.get_json()["total"] == 1

    def test_it_lead_cannot_be_assigned(self, client, admin_event, make_user):
        lead = make_user("lead", ROLE_IT_LEAD)
        res = client.post(
            "/api/v1/surveys", json=_survey_body(assigned_admin_id=lead.id), headers=admin_event,
        )
        assert res.status_code == 400

    def test_list_search_and_status(self, client, admin_event, survey):
        _create(client, admin_event)
        res = client.get("/api/v1/surveys?search=pulse", headers=admin_event)
        assert [s["title"] for s in res.get_json()["data"]] == ["Helpdesk Pulse"]

        res = client.get("/api/v1/surveys?status=Active", headers=admin_event)
        body = res.get_json()
        assert body["total"] == 1
        assert body["data"][0]["response_count"] == 0

    def test_get_counts_responses(self, client, admin_event, survey, submitted):
        res = client.get(f"/api/v1/surveys/{survey.id}", headers=admin_event)
        data = res.get_json()["data"]
        assert data["response_count"] == 1
        assert len(data["questions"]) == 3

    def test_delete_blocked_by_responses(self, client, admin_event, survey, submitted):
        res = client.delete(f"/api/v1/surveys/{survey.id}", headers=admin_event)
        assert res.status_code == 409

    def test_delete_draft(self, client, admin_event):
        survey = _create(client, admin_event)
        assert client.delete(f"/api/v1/surveys/{survey['id']}", headers=admin_event).status_code == 200
        assert client.get(f"/api/v1/surveys/{survey['id']}", headers=admin_event).status_code == 404

    def test_department_head_reads_but_cannot_create(self, client, dept_head, survey):
        assert client.get("/api/v1/surveys", headers=dept_head).status_code == 200
        res = client.post("/api/v1/surveys", json=_survey_body(), headers=dept_head)
        assert res.status_code == 403


class TestConfigurationAndLinks:
    def test_update_config_and_preview(self, client, admin_event, survey):
        res = client.patch(
            f"/api/v1/surveys/{survey.id}/config",
            json={"primary_color": "#112233", "button_style": "pill", "multi_page": "true"},
            headers=admin_event,
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["multi_page"] is True

        preview = client.get(f"/api/v1/surveys/{survey.id}/preview", headers=admin_event)
        data = preview.get_json()["data"]
        assert data["read_only"] is True
        assert data["styles"]["css_variables"]["--survey-primary-color"] == "#112233"
        assert data["styles"]["css_variables"]["--survey-button-radius"] == "50rem"
        assert len(data["questions"]) == 3

    def test_invalid_color(self, client, admin_event, survey):
        res = client.patch(
            f"/api/v1/surveys/{survey.id}/config", json={"background_color": "red"},
            headers=admin_event,
        )
        assert res.status_code == 400

    def test_link_and_short_link_redirect(self, client, admin_event, survey):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/link", json={"shorten": True}, headers=admin_event,
        )
        data = res.get_json()["data"]
        assert data["survey_link"] == f"http://csi.test/survey/{survey.id}"
        assert data["shortened_link"].startswith("http://csi.test/s/")

        code = data["shortened_link"].rsplit("/", 1)[1]
        redirect = client.get(f"/s/{code}")
        assert redirect.status_code == 302
        assert redirect.headers["Location"] == data["survey_link"]

    def test_unknown_short_code(self, client):
        assert client.get("/s/deadbeef").status_code == 404

    @pytest.mark.parametrize("code", ["%25", "_", "%25%25", "a%25"])
    def test_wildcards_do_not_match(self, client, admin_event, survey, code):
        client.post(f"/api/v1/surveys/{survey.id}/link", json={"shorten": True}, headers=admin_event)
        assert client.get(f"/s/{code}").status_code == 404

    def test_embed_code(self, client, admin_event, survey):
        res = client.post(f"/api/v1/surveys/{survey.id}/embed", json={}, headers=admin_event)
        embed = res.get_json()["data"]["embed_code"]
        assert embed.startswith("<iframe")
        assert f"/survey/{survey.id}" in embed


class TestScheduling:
    def test_weekly_blast(self, client, admin_event, survey):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/schedule-blast",
            json={
                "scheduled_date": "2026-11-02",
                "scheduled_time": "09:30",
                "frequency": "weekly",
                "day_of_week": 1,
                "email_template": "survey-invitation",
                "target_criteria": {"department_ids": [1]},
            },
            headers=admin_event,
        )
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["status"] == "Pending"
        assert data["next_execution_at"] == "2026-11-02T09:30:00"

    @pytest.mark.parametrize("body", [
        {"scheduled_date": "2026-11-02"},
        {"scheduled_date": "2026-11-02", "email_template": "t", "frequency": "hourly"},
        {"scheduled_date": "2026-11-02", "email_template": "t", "frequency": "weekly",
         "scheduled_time": "09:00"},
        {"scheduled_date": "2026-11-02", "email_template": "t", "frequency": "daily"},
        {"scheduled_date": "2026-11-02", "email_template": "t", "scheduled_time": "9h"},
    ])
    def test_schedule_validation(self, client, admin_event, survey, body):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/schedule-blast", json=body, headers=admin_event,
        )
        assert res.status_code == 400

    def test_reminder_requires_active_survey(self, client, admin_event):
        draft = _create(client, admin_event)
        res = client.post(
            f"/api/v1/surveys/{draft['id']}/schedule-reminder",
            json={"scheduled_date": "2026-11-05", "email_template": "survey-reminder"},
            headers=admin_event,
        )
        assert res.status_code == 400

    def test_list_and_cancel(self, client, admin_event, survey):
        created = client.post(
            f"/api/v1/surveys/{survey.id}/schedule-reminder",
            json={"scheduled_date": "2026-11-05", "email_template": "survey-reminder"},
            headers=admin_event,
        ).get_json()["data"]

        listed = client.get(
            f"/api/v1/surveys/{survey.id}/scheduled-operations?operation_type=Reminder",
            headers=admin_event,
        ).get_json()
        assert listed["total"] == 1

        url = f"/api/v1/surveys/scheduled-operations/{created['id']}"
        res = client.delete(url, headers=admin_event)
        assert res.get_json()["data"]["status"] == "Cancelled"
        assert res.get_json()["data"]["next_execution_at"] is None
        assert client.delete(url, headers=admin_event).status_code == 409


class TestUploads:
    def test_upload_hero_and_serve(self, client, admin_event, survey):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/upload/hero",
            data={"image": (io.BytesIO(b"\x89PNG fake image"), "cover.png", "image/png")},
            content_type="multipart/form-data",
            headers=admin_event,
        )
        assert res.status_code == 200, res.get_json()
        url = res.get_json()["data"]["hero_image_url"]
        assert url.startswith("http://csi.test/uploads/surveys/")
        assert url.endswith(".png")

        served = client.get(url.replace("http://csi.test", ""))
        assert served.status_code == 200
        assert served.data == b"\x89PNG fake image"

    def test_upload_rejects_non_image(self, client, admin_event, survey):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/upload/logo",
            data={"image": (io.BytesIO(b"hello"), "notes.txt", "text/plain")},
            content_type="multipart/form-data",
            headers=admin_event,
        )
        assert res.status_code == 400
        assert "Invalid file type" in res.get_json()["error"]["message"]

    def test_upload_without_file(self, client, admin_event, survey):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/upload/background",
            data={}, content_type="multipart/form-data", headers=admin_event,
        )
        assert res.status_code == 400

    def _upload(self, client, headers, survey, name="cover.png"):
        res = client.post(
            f"/api/v1/surveys/{survey.id}/upload/hero",
            data={"image": (io.BytesIO(b"\x89PNG fake image"), name, "image/png")},
            content_type="multipart/form-data",
            headers=headers,
        )
        assert res.status_code == 200, res.get_json()
        return res.get_json()["data"]["hero_image_url"]

    def test_reupload_removes_previous_file(self, app, client, admin_event, survey):
        first = self._upload(client, admin_event, survey)
        first_path = os.path.join(app.config["UPLOAD_FOLDER"], first.split("/uploads/", 1)[1])
        assert os.path.exists(first_path)

        second = self._upload(client, admin_event, survey, "cover2.png")
        assert second != first
        assert not os.path.exists(first_path)

    @pytest.mark.parametrize("url", [
        "http://csi.test/uploads/../victim.txt",
        "http://elsewhere.test/uploads/surveys/a.png",
        "/etc/passwd",
    ])
    def test_config_image_must_be_an_upload(self, client, admin_event, survey, url):
        res = client.patch(
            f"/api/v1/surveys/{survey.id}/config", json={"hero_image_url": url}, headers=admin_event,
        )
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "hero_image_url must point to an uploaded file"

    def test_reupload_never_deletes_outside_upload_folder(self, app, client, admin_event, survey):
        victim = os.path.join(os.path.dirname(app.config["UPLOAD_FOLDER"]), "victim.txt")
        with open(victim, "w") as fh:
            fh.write("keep me")
        survey.configuration = SurveyConfiguration(hero_image_url="http://csi.test/uploads/../victim.txt")
        db.session.commit()

        self._upload(client, admin_event, survey)
        assert os.path.exists(victim)
        os.remove(victim)
