"""
Takeout approval workflow and best comment tests.

Covers:
  - propose → approve / reject / cancel transitions and their history
  - re-proposal after rejection
  - bulk operations with partial failures
  - IT lead scoping of the pending queue
  - audit rows and proposer notifications on decisions
  - best comments and IT lead feedback
  - statistics and duplicate-aware respondent listing
"""

import pytest

from csi_portal.models import db
from csi_portal.models.audit import AuditLog
from csi_portal.models.auth import ROLE_IT_LEAD
from csi_portal.models.response import QuestionResponse
from csi_portal.models.scheduling import EmailLog


@pytest.fixture()
def target(submitted, question_ids):
    """(response_id, question_id) of the Rating answer of the submitted response."""
    return {"response_id": submitted, "question_id": question_ids["Rating"]}


def _propose(client, headers, target, reason="Respondent rated the wrong app"):
    return client.post(
        "/api/v1/approvals/propose-takeout", json={**target, "reason": reason}, headers=headers,
    )


def _answer(target):
    return QuestionResponse.query.filter_by(
        response_id=target["response_id"], question_id=target["question_id"],
    ).one()


class TestProposal:
    def test_propose(self, client, admin_event, target):
        res = _propose(client, admin_event, target)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["takeout_status"] == "ProposedTakeout"
        assert data["takeout_reason"] == "Respondent rated the wrong app"
        assert data["proposed_at"] is not None

    def test_reason_required(self, client, admin_event, target):
        assert _propose(client, admin_event, target, reason="  ").status_code == 400

    def test_cannot_propose_twice(self, client, admin_event, target):
        _propose(client, admin_event, target)
        res = _propose(client, admin_event, target)
        assert res.status_code == 409

    def test_unknown_answer(self, client, admin_event, target):
        res = _propose(client, admin_event, {**target, "question_id": 9999})
        assert res.status_code == 404

    def test_it_lead_cannot_propose(self, client, it_lead, target):
        assert _propose(client, it_lead, target).status_code == 403

    def test_cancel_via_query_string(self, client, admin_event, target):
        _propose(client, admin_event, target)
        res = client.delete(
            "/api/v1/approvals/propose-takeout", query_string=target, headers=admin_event,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["takeout_status"] == "Active"
        assert data["takeout_reason"] is None

    def test_cancel_requires_proposal(self, client, admin_event, target):
        res = client.delete("/api/v1/approvals/propose-takeout", json=target, headers=admin_event)
        assert res.status_code == 400


class TestDecision:
    def test_approve_writes_history_audit_and_notification(self, client, admin_event, it_lead, target):
        _propose(client, admin_event, target)
        res = client.post(
            "/api/v1/approvals/approve", json={**target, "reason": "Agreed"}, headers=it_lead,
        )
        assert res.status_code == 200
        assert res.get_json()["data"]["takeout_status"] == "TakenOut"

        qr = _answer(target)
        history = client.get(f"/api/v1/approvals/history/{qr.id}", headers=admin_event).get_json()["data"]
        assert [h["action"] for h in history] == ["Proposed", "Approved"]
        assert history[1]["previous_status"] == "ProposedTakeout"
        assert history[1]["performed_by_name"] == "IT Lead"

        audit = AuditLog.query.filter_by(action="Approve").one()
        assert audit.entity_type == "QuestionResponse"
        assert audit.entity_id == str(qr.id)

        mail = EmailLog.query.filter_by(email_type="Notification").one()
        assert mail.recipient_email == "eventadmin@example.com"
        assert mail.subject == "Takeout Approved - IT Satisfaction 2026"

    def test_reject_requires_reason(self, client, admin_event, it_lead, target):
        _propose(client, admin_event, target)
        res = client.post("/api/v1/approvals/reject", json=target, headers=it_lead)
        assert res.status_code == 400

    def test_rejected_can_be_proposed_again(self, client, admin_event, it_lead, target):
        _propose(client, admin_event, target)
        res = client.post(
            "/api/v1/approvals/reject", json={**target, "reason": "Valid answer"}, headers=it_lead,
        )
        assert res.get_json()["data"]["takeout_status"] == "Rejected"
        assert EmailLog.query.one().subject == "Takeout Rejected - IT Satisfaction 2026"

        res = _propose(client, admin_event, target, reason="New evidence")
        assert res.status_code == 200
        assert res.get_json()["data"]["reviewed_by"] is None

    def test_reject_writes_audit_row(self, client, admin_event, it_lead, target):
        _propose(client, admin_event, target)
        client.post(
            "/api/v1/approvals/reject", json={**target, "reason": "Valid answer"}, headers=it_lead,
        )
        audit = AuditLog.query.filter_by(action="Reject").one()
        assert audit.username == "itlead"
        assert audit.entity_id == str(_answer(target).id)
        assert audit.old_values == {"takeout_status": "ProposedTakeout"}
        assert audit.new_values == {"takeout_status": "Rejected", "reason": "Valid answer"}

    def test_approve_requires_proposed_status(self, client, it_lead, target):
        res = client.post("/api/v1/approvals/approve", json=target, headers=it_lead)
        assert res.status_code == 400
        assert "current status: Active" in res.get_json()["error"]["message"]

    def test_admin_event_cannot_approve(self, client, admin_event, target):
        _propose(client, admin_event, target)
        res = client.post("/api/v1/approvals/approve", json=target, headers=admin_event)
        assert res.status_code == 403


class TestBulk:
    def test_bulk_propose_partial_failure(self, client, admin_event, target):
        items = [target, {"response_id": target["response_id"], "question_id": 9999}]
        res = client.post(
            "/api/v1/approvals/bulk-propose-takeout",
            json={"items": items, "reason": "Out of scope"},
            headers=admin_event,
        )
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["success"] == [target]
        assert data["failed"][0]["question_id"] == 9999
        assert "not found" in data["failed"][0]["error"]

    def test_bulk_approve(self, client, admin_event, it_lead, target, question_ids):
        matrix = {"response_id": target["response_id"], "question_id": question_ids["MatrixLikert"]}
        client.post(
            "/api/v1/approvals/bulk-propose-takeout",
            json={"items": [target, matrix], "reason": "Noise"},
            headers=admin_event,
        )
        res = client.post("/api/v1/approvals/bulk-approve", json={"items": [target, matrix]}, headers=it_lead)
        assert len(res.get_json()["data"]["success"]) == 2
        assert _answer(matrix).takeout_status == "TakenOut"

    def test_bulk_reject_needs_reason(self, client, it_lead, target):
        res = client.post("/api/v1/approvals/bulk-reject", json={"items": [target]}, headers=it_lead)
        assert res.status_code == 400

    def test_bulk_requires_items(self, client, admin_event):
        res = client.post(
            "/api/v1/approvals/bulk-propose-takeout", json={"items": [], "reason": "x"},
            headers=admin_event,
        )
        assert res.status_code == 400


class TestQueues:
    def test_pending_scoped_to_led_functions(self, client, admin_event, it_lead, make_user, login, target):
        _propose(client, admin_event, target)

        rows = client.get("/api/v1/approvals/pending", headers=it_lead).get_json()
        assert rows["total"] == 1
        assert rows["data"][0]["application_name"] == "ERP Suite"
        assert rows["data"][0]["proposed_by_name"] == "Eventadmin"

        make_user("otherlead", ROLE_IT_LEAD)
        other = client.get("/api/v1/approvals/pending", headers=login("otherlead")).get_json()
        assert other["total"] == 0

        everyone = client.get("/api/v1/approvals/pending", headers=admin_event).get_json()
        assert everyone["total"] == 1

    def test_proposed_filters(self, client, admin_event, target, org):
        _propose(client, admin_event, target)
        res = client.get(
            f"/api/v1/approvals/proposed?application_id={org['crm_id']}", headers=admin_event,
        )
        assert res.get_json()["total"] == 0
        res = client.get("/api/v1/approvals/proposed?status=Bogus", headers=admin_event)
        assert res.status_code == 400

    def test_statistics(self, client, admin_event, survey, target):
        _propose(client, admin_event, target)
        stats = client.get(
            f"/api/v1/approvals/statistics/{survey.id}", headers=admin_event,
        ).get_json()["data"]
        assert stats["overall"] == {
            "active": 2, "proposed_takeout": 1, "taken_out": 0, "rejected": 0, "total": 3,
        }
        assert stats["by_question"][0]["question_text"] == "Overall satisfaction"

    def test_respondents_duplicate_filter(self, client, admin_event, survey, payload):
        survey.duplicate_prevention_enabled = False
        db.session.commit()
        client.post("/api/v1/responses", json=payload())
        client.post("/api/v1/responses", json=payload(email="JANE@example.com"))
        client.post("/api/v1/responses", json=payload(email="max@example.com"))

        url = f"/api/v1/approvals/respondents?survey_id={survey.id}"
        assert client.get(url, headers=admin_event).get_json()["total"] == 3
        dupes = client.get(url + "&duplicate_filter=duplicate", headers=admin_event).get_json()
        assert dupes["total"] == 2
        assert all(r["is_duplicate"] for r in dupes["data"])
        unique = client.get(url + "&duplicate_filter=unique", headers=admin_event).get_json()
        assert [r["respondent_email"] for r in unique["data"]] == ["max@example.com"]

    def test_respondents_requires_survey(self, client, admin_event):
        assert client.get("/api/v1/approvals/respondents", headers=admin_event).status_code == 400


class TestBestComments:
    @pytest.fixture()
    def commented(self, client, payload, question_ids):
        res = client.post("/api/v1/responses", json=payload(rating=3, comment="Tickets take weeks"))
        response_id = res.get_json()["data"]["response_ids"][0]
        return QuestionResponse.query.filter_by(
            response_id=response_id, question_id=question_ids["Rating"],
        ).one().id

    def test_mark_list_and_feedback(self, client, admin_event, it_lead, survey, commented):
        res = client.post(
            "/api/v1/approvals/best-comments", json={"question_response_id": commented},
            headers=admin_event,
        )
        assert res.get_json()["data"]["is_best_comment"] is True

        res = client.post(
            "/api/v1/approvals/best-comments/feedback",
            json={"question_response_id": commented, "feedback_text": "Queue is being staffed"},
            headers=it_lead,
        )
        assert res.status_code == 201
        assert res.get_json()["data"]["it_lead_name"] == "IT Lead"

        rows = client.get(
            f"/api/v1/approvals/best-comments?survey_id={survey.id}", headers=it_lead,
        ).get_json()["data"]
        assert len(rows) == 1
        assert rows[0]["comment_value"] == "Tickets take weeks"
        assert rows[0]["feedback"][0]["feedback_text"] == "Queue is being staffed"

    def test_feedback_updates_existing(self, client, admin_event, it_lead, commented):
        client.post(
            "/api/v1/approvals/best-comments", json={"question_response_id": commented},
            headers=admin_event,
        )
        for text in ("First", "Second"):
            client.post(
                "/api/v1/approvals/best-comments/feedback",
                json={"question_response_id": commented, "feedback_text": text},
                headers=it_lead,
            )
        rows = client.get("/api/v1/approvals/best-comments", headers=it_lead).get_json()["data"]
        assert [f["feedback_text"] for f in rows[0]["feedback"]] == ["Second"]

    def test_answer_without_comment_cannot_be_marked(self, client, admin_event, target):
        qr = _answer(target)
        res = client.post(
            "/api/v1/approvals/best-comments", json={"question_response_id": qr.id},
            headers=admin_event,
        )
        assert res.status_code == 400

    def test_unmark(self, client, admin_event, commented):
        client.post(
            "/api/v1/approvals/best-comments", json={"question_response_id": commented},
            headers=admin_event,
        )
        res = client.delete(f"/api/v1/approvals/best-comments/{commented}", headers=admin_event)
        assert res.get_json()["data"]["is_best_comment"] is False
        again = client.delete(f"/api/v1/approvals/best-comments/{commented}", headers=admin_event)
        assert again.status_code == 400

    def test_feedback_only_on_best_comments(self, client, it_lead, commented):
        res = client.post(
            "/api/v1/approvals/best-comments/feedback",
            json={"question_response_id": commented, "feedback_text": "Noted"},
            headers=it_lead,
        )
        assert res.status_code == 400
