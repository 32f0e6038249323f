"""
Response API tests.

Covers:
  - public form, organization tree, applications per department
  - submission validation (window, hierarchy, mappings, mandatory, rating rules)
  - one response per selected application, duplicate prevention
  - admin list / detail / statistics
"""

from datetime import timedelta

import pytest

from csi_portal.models import db
from csi_portal.models.response import QuestionResponse, Response
from csi_portal.utils.helpers import utcnow


class TestPublicForm:
    def test_form_without_token(self, client, survey):
        res = client.get(f"/api/v1/responses/survey/{survey.id}/form")
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["survey"]["title"] == "IT Satisfaction 2026"
        assert [q["type"] for q in data["questions"]] == ["Rating", "Text", "MatrixLikert"]

    def test_public_survey_page(self, client, survey):
        res = client.get(f"/survey/{survey.id}")
        assert res.status_code == 200
        assert res.get_json()["data"]["survey"]["id"] == survey.id

    def test_draft_survey_not_available(self, client, survey):
        survey.status = "Draft"
        db.session.commit()
        res = client.get(f"/api/v1/responses/survey/{survey.id}/form")
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "Survey is not currently active"

    def test_expired_survey_not_available(self, client, survey):
        survey.start_date = utcnow() - timedelta(days=10)
        survey.end_date = utcnow() - timedelta(days=1)
        db.session.commit()
        res = client.get(f"/api/v1/responses/survey/{survey.id}/form")
        assert res.get_json()["error"]["message"] == "Survey is not available at this time"

    def test_organization_tree(self, client, org):
        tree = client.get("/api/v1/responses/organization").get_json()["data"]
        assert tree[0]["code"] == "BU1"
        departments = tree[0]["divisions"][0]["departments"]
        assert [d["name"] for d in departments] == ["Finance", "Logistics"]

    def test_applications_for_department(self, client, survey, org):
        res = client.get(
            f"/api/v1/responses/survey/{survey.id}/applications?department_id={org['department_id']}",
        )
        assert [a["code"] for a in res.get_json()["data"]] == ["CRM", "ERP"]

    def test_applications_require_department(self, client, survey):
        res = client.get(f"/api/v1/responses/survey/{survey.id}/applications")
        assert res.status_code == 400


class TestSubmission:
    def test_one_response_per_application(self, client, org, payload):
        res = client.post(
            "/api/v1/responses", json=payload(app_ids=[org["erp_id"], org["crm_id"]]),
        )
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert len(data["response_ids"]) == 2
        assert data["message"] == "Survey response submitted successfully"
        assert Response.query.count() == 2
        assert QuestionResponse.query.count() == 6
        assert {qr.takeout_status for qr in QuestionResponse.query} == {"Active"}

    def test_matrix_numeric_is_row_average(self, client, payload, question_ids):
        client.post("/api/v1/responses", json=payload())
        qr = QuestionResponse.query.filter_by(question_id=question_ids["MatrixLikert"]).one()
        assert qr.numeric_value == 4.5
        assert qr.matrix_values == {"Speed": 4, "Quality": 5}

    def test_low_rating_requires_comment(self, client, payload):
        res = client.post("/api/v1/responses", json=payload(rating=3))
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == (
            "A comment is required for ratings below 5 on 'Overall satisfaction'"
        )

        res = client.post("/api/v1/responses", json=payload(rating=3, comment="Slow support"))
        assert res.status_code == 201

    def test_rating_out_of_range(self, client, payload):
        res = client.post("/api/v1/responses", json=payload(rating=11))
        assert res.status_code == 400
        assert "between 1 and 10" in res.get_json()["error"]["message"]

    def test_mandatory_question(self, client, payload, question_ids):
        body = payload()
        body["responses"] = [r for r in body["responses"] if r["question_id"] != question_ids["Rating"]]
        res = client.post("/api/v1/responses", json=body)
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "Question 'Overall satisfaction' is mandatory"

    def test_unmapped_application(self, client, org, payload):
        res = client.post("/api/v1/responses", json=payload(app_ids=[org["unmapped_app_id"]]))
        assert res.status_code == 400
        error = res.get_json()["error"]
        assert error["message"] == "Selected applications are not available for this department"
        assert error["details"] == {"application_ids": [org["unmapped_app_id"]]}

    def test_department_outside_division(self, client, payload, admin_event):
        other_bu = client.post(
            "/api/v1/business-units", json={"code": "BU2", "name": "Other"}, headers=admin_event,
        ).get_json()["data"]
        body = payload()
        body["respondent"]["business_unit_id"] = other_bu["id"]
        res = client.post("/api/v1/responses", json=body)
        assert res.status_code == 400
        assert "does not belong" in res.get_json()["error"]["message"]

    @pytest.mark.parametrize("value", ["Faster tickets", 7, ["a", "b"]])
    def test_answer_value_must_be_object(self, client, payload, question_ids, value):
        body = payload()
        for answer in body["responses"]:
            if answer["question_id"] == question_ids["Text"]:
                answer["value"] = value
        res = client.post("/api/v1/responses", json=body)
        assert res.status_code == 400
        error = res.get_json()["error"]
        assert error["message"] == "Each answer value must be an object"
        assert error["details"] == {"question_id": question_ids["Text"]}
        assert Response.query.count() == 0

    def test_foreign_question(self, client, payload):
        body = payload()
        body["responses"].append({"question_id": 9999, "value": {"text_value": "x"}})
        assert client.post("/api/v1/responses", json=body).status_code == 400

    @pytest.mark.parametrize("field", ["survey_id", "respondent", "selected_application_ids", "responses"])
    def test_required_fields(self, client, payload, field):
        body = payload()
        body.pop(field)
        assert client.post("/api/v1/responses", json=body).status_code == 400

    def test_duplicate_submission_conflict(self, client, payload, submitted):
        res = client.post("/api/v1/responses", json=payload(email="  JANE@example.com "))
        assert res.status_code == 409
        assert res.get_json()["error"]["message"] == (
            "You have already submitted a response for application: ERP Suite"
        )

    def test_duplicates_allowed_when_prevention_disabled(self, client, survey, payload, submitted):
        survey.duplicate_prevention_enabled = False
        db.session.commit()
        assert client.post("/api/v1/responses", json=payload()).status_code == 201

    def test_check_duplicate(self, client, survey, org, submitted):
        body = {"survey_id": survey.id, "email": "Jane@Example.com", "application_id": org["erp_id"]}
        res = client.post("/api/v1/responses/check-duplicate", json=body)
        assert res.get_json()["data"]["is_duplicate"] is True

        body["application_id"] = org["crm_id"]
        res = client.post("/api/v1/responses/check-duplicate", json=body)
        assert res.get_json()["data"]["is_duplicate"] is False


class TestAdminAccess:
    def test_list_requires_permission(self, client, super_admin, survey):
        assert client.get("/api/v1/responses", headers=super_admin).status_code == 403

    def test_list_and_filter(self, client, admin_event, survey, org, payload, submitted):
        client.post("/api/v1/responses", json=payload(email="max@example.com", app_ids=[org["crm_id"]]))

        body = client.get(f"/api/v1/responses?survey_id={survey.id}", headers=admin_event).get_json()
        assert body["total"] == 2
        assert body["page"] == 1

        body = client.get("/api/v1/responses?email=max", headers=admin_event).get_json()
        assert [r["application_name"] for r in body["data"]] == ["CRM Portal"]

    def test_detail_includes_prompts(self, client, it_lead, submitted):
        data = client.get(f"/api/v1/responses/{submitted}", headers=it_lead).get_json()["data"]
        assert data["department_name"] == "Finance"
        prompts = {a["prompt_text"] for a in data["answers"]}
        assert "Overall satisfaction" in prompts

    def test_statistics(self, client, admin_event, survey, payload):
        client.post("/api/v1/responses", json=payload(rating=8))
        client.post("/api/v1/responses", json=payload(email="max@example.com", rating=6))

        stats = client.get(
            f"/api/v1/responses/survey/{survey.id}/statistics", headers=admin_event,
        ).get_json()["data"]
        assert stats["total_responses"] == 2
        assert stats["by_application"][0]["response_count"] == 2
        ratings = {r["question_text"]: r["average_rating"] for r in stats["average_ratings"]}
        assert ratings["Overall satisfaction"] == 7.0
        assert ratings["Service quality"] == 4.5
        assert stats["takeout_statistics"]["active"] == 6
