"""
Audit trail tests: middleware rows, query filters, entity history and
client-side event logging.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from csi_portal.models import db
from csi_portal.models.audit import AuditLog
from csi_portal.services import audit_service


def _create_bu(client, headers, code="BU9"):
    res = client.post("/api/v1/business-units", json={"code": code, "name": "Audit BU"}, headers=headers)
    assert res.status_code == 201
    return res.get_json()["data"]["id"]


class TestMiddleware:
    def test_mutation_writes_row(self, client, admin_event):
        bu_id = _create_bu(client, admin_event)
        row = AuditLog.query.filter_by(action="Create").one()
        assert row.entity_type == "BusinessUnit"
        assert row.entity_id == str(bu_id)
        assert row.username == "eventadmin"
        assert row.new_values["status"] == 201

    def test_failed_request_not_audited(self, client, admin_event):
        client.post("/api/v1/business-units", json={"name": "No code"}, headers=admin_event)
        assert AuditLog.query.filter_by(action="Create").count() == 0

    def test_login_recorded(self, client, admin_event):
        assert AuditLog.query.filter_by(action="Login", username="eventadmin").count() == 1

    def test_update_and_delete_rows(self, client, admin_event):
        bu_id = _create_bu(client, admin_event)
        client.put(f"/api/v1/business-units/{bu_id}", json={"name": "Renamed"}, headers=admin_event)
        client.delete(f"/api/v1/business-units/{bu_id}", headers=admin_event)
        rows = AuditLog.query.filter_by(entity_type="BusinessUnit").order_by(AuditLog.id).all()
        assert [r.action for r in rows] == ["Create", "Update", "Delete"]
        assert rows[2].new_values["method"] == "DELETE"


class TestAuditService:
    def test_log_update_records_both_sides(self):
        row = audit_service.log_update(
            "Survey", 7, {"status": "Draft"}, {"status": "Active"}, username="cli",
        )
        assert row.action == "Update"
        assert row.entity_id == "7"
        assert row.old_values == {"status": "Draft"}
        assert row.new_values == {"status": "Active"}

    def test_uncommitted_row_rolls_back_with_caller(self):
        audit_service.log_approve("QuestionResponse", 1, {"reason": "ok"}, username="cli", commit=False)
        db.session.rollback()
        assert AuditLog.query.count() == 0

    def test_uncommitted_row_propagates_errors(self, monkeypatch):
        def _fail(**kwargs):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(audit_service, "write_audit", _fail)
        with pytest.raises(SQLAlchemyError):
            audit_service.log_reject("QuestionResponse", 1, username="cli", commit=False)
        assert audit_service.log_reject("QuestionResponse", 1, username="cli") is None


class TestQueries:
    def test_list_with_filters(self, client, super_admin, admin_event):
        _create_bu(client, admin_event, "BU8")
        _create_bu(client, admin_event, "BU9")

        body = client.get("/api/v1/audit?action=Create&per_page=1", headers=super_admin).get_json()
        assert body["total"] == 2
        assert body["per_page"] == 1
        assert len(body["data"]) == 1

        body = client.get("/api/v1/audit?entity_type=BusinessUnit", headers=super_admin).get_json()
        assert body["total"] == 2

    def test_invalid_action(self, client, super_admin):
        res = client.get("/api/v1/audit?action=Explode", headers=super_admin)
        assert res.status_code == 400

    def test_entity_history(self, client, super_admin, admin_event):
        bu_id = _create_bu(client, admin_event)
        client.put(f"/api/v1/business-units/{bu_id}", json={"name": "Renamed"}, headers=admin_event)

        res = client.get(
            f"/api/v1/audit/entity-history?entity_type=BusinessUnit&entity_id={bu_id}",
            headers=super_admin,
        )
        assert [r["action"] for r in res.get_json()["data"]] == ["Create", "Update"]

    def test_entity_history_needs_params(self, client, super_admin):
        res = client.get("/api/v1/audit/entity-history?entity_type=Survey", headers=super_admin)
        assert res.status_code == 400

    def test_only_super_admin_reads(self, client, admin_event):
        assert client.get("/api/v1/audit", headers=admin_event).status_code == 403


class TestClientEvents:
    def test_log_export_event(self, client, it_lead):
        res = client.post(
            "/api/v1/audit/log",
            json={"action": "Export", "entity_type": "Report", "details": {"format": "csv"}},
            headers=it_lead,
        )
        assert res.status_code == 201
        assert res.get_json()["data"] == {"logged": True}
        row = AuditLog.query.filter_by(action="Export").one()
        assert row.username == "itlead"
        assert row.new_values == {"format": "csv"}

    def test_rejects_server_side_actions(self, client, it_lead):
        res = client.post(
            "/api/v1/audit/log", json={"action": "Delete", "entity_type": "Survey"}, headers=it_lead,
        )
        assert res.status_code == 400

    def test_entity_type_required(self, client, it_lead):
        res = client.post("/api/v1/audit/log", json={"action": "Access"}, headers=it_lead)
        assert res.status_code == 400

    def test_requires_login(self, client):
        res = client.post("/api/v1/audit/log", json={"action": "Access", "entity_type": "Survey"})
        assert res.status_code == 401
