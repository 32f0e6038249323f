"""
Mapping API tests: Function ↔ Application and Application ↔ Department.
"""

import csv
import io


class TestFunctionApplication:
    def test_list_filtered_by_function(self, client, admin_event, org):
        res = client.get(
            f"/api/v1/mappings/function-application?function_id={org['function_id']}",
            headers=admin_event,
        )
        assert res.status_code == 200
        names = sorted(m["application_name"] for m in res.get_json()["data"])
        assert names == ["CRM Portal", "ERP Suite"]

    def test_create_mapping(self, client, admin_event, org):
        res = client.post(
            "/api/v1/mappings/function-application",
            json={"function_id": org["function_id"], "application_id": org["unmapped_app_id"]},
            headers=admin_event,
        )
        assert res.status_code == 201
        assert res.get_json()["data"]["application_name"] == "BI Reports"

    def test_duplicate_mapping_conflict(self, client, admin_event, org):
        res = client.post(
            "/api/v1/mappings/function-application",
            json={"function_id": org["function_id"], "application_id": org["erp_id"]},
            headers=admin_event,
        )
        assert res.status_code == 409

    def test_missing_ids_validation(self, client, admin_event):
        res = client.post(
            "/api/v1/mappings/function-application", json={"function_id": 1}, headers=admin_event,
        )
        assert res.status_code == 400
        assert res.get_json()["error"]["details"] == {"application_id": "required"}

    def test_lookup_both_directions(self, client, admin_event, org):
        apps = client.get(
            f"/api/v1/mappings/function-application/function/{org['function_id']}",
            headers=admin_event,
        ).get_json()["data"]
        assert {a["code"] for a in apps} == {"ERP", "CRM"}

        functions = client.get(
            f"/api/v1/mappings/function-application/application/{org['erp_id']}",
            headers=admin_event,
        ).get_json()["data"]
        assert [f["code"] for f in functions] == ["FN1"]

    def test_delete(self, client, admin_event, org):
        items = client.get(
            "/api/v1/mappings/function-application", headers=admin_event,
        ).get_json()["data"]
        res = client.delete(
            f"/api/v1/mappings/function-application/{items[0]['id']}", headers=admin_event,
        )
        assert res.status_code == 200
        again = client.delete(
            f"/api/v1/mappings/function-application/{items[0]['id']}", headers=admin_event,
        )
        assert again.status_code == 404

    def test_super_admin_cannot_create(self, client, super_admin, org):
        res = client.post(
            "/api/v1/mappings/function-application",
            json={"function_id": org["function_id"], "application_id": org["unmapped_app_id"]},
            headers=super_admin,
        )
        assert res.status_code == 403


class TestApplicationDepartment:
    def test_applications_of_department(self, client, admin_event, org):
        res = client.get(
            f"/api/v1/mappings/application-department/department/{org['department_id']}",
            headers=admin_event,
        )
        assert [a["name"] for a in res.get_json()["data"]] == ["CRM Portal", "ERP Suite"]

    def test_departments_of_application(self, client, admin_event, org):
        res = client.get(
            f"/api/v1/mappings/application-department/application/{org['erp_id']}",
            headers=admin_event,
        )
        assert [d["name"] for d in res.get_json()["data"]] == ["Finance"]

    def test_create_for_unknown_department(self, client, admin_event, org):
        res = client.post(
            "/api/v1/mappings/application-department",
            json={"application_id": org["erp_id"], "department_id": 999},
            headers=admin_event,
        )
        assert res.status_code == 404


class TestCsvExport:
    def test_export_application_department(self, client, admin_event, org):
        res = client.get(
            "/api/v1/mappings/application-department/export/csv", headers=admin_event,
        )
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        assert "attachment; filename=application-department-mappings-" in res.headers["Content-Disposition"]

        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        assert rows[0][:4] == ["Application Code", "Application Name", "Department Code", "Department Name"]
        assert {r[0] for r in rows[1:]} == {"ERP", "CRM"}

    def test_export_function_application(self, client, admin_event, org):
        res = client.get(
            "/api/v1/mappings/function-application/export/csv", headers=admin_event,
        )
        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        assert rows[0][0] == "Function Code"
        assert len(rows) == 3
