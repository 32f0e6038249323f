"""
Bulk import tests: Excel uploads of master data, users and mappings,
per-row results, duplicate handling and template downloads.

Workbooks are built in memory with openpyxl.
"""

import io

import pytest
from openpyxl import Workbook, load_workbook

from csi_portal.models.auth import User
from csi_portal.models.org import (
    ApplicationDepartmentMapping,
    BusinessUnit,
    Department,
    Division,
    FunctionApplicationMapping,
)

USER_HEADERS = ["Username", "DisplayName", "Email", "Role", "IsActive", "UseLDAP",
                "Password", "Department Code"]


def workbook(headers, *rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _upload(client, headers, path, content, **form):
    data = {"file": (io.BytesIO(content), "import.xlsx"), **form}
    return client.post(path, data=data, content_type="multipart/form-data", headers=headers)


def _import(client, headers, entity, content, **form):
    return _upload(client, headers, f"/api/v1/bulk-import/{entity}", content, **form)


class TestMasterDataImport:
    def test_business_units(self, client, admin_event):
        res = _import(client, admin_event, "business-units",
                      workbook(["Code", "Name"], ("BU2", "Retail"), ("BU3", "Wholesale")))
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "completed"
        assert data["imported"] == 2
        assert [r["action"] for r in data["rows"]] == ["imported", "imported"]
        assert {bu.code for bu in BusinessUnit.query.all()} == {"BU2", "BU3"}

    def test_bad_rows_reported_and_others_kept(self, client, admin_event):
        content = workbook(["Code", "Name"], ("BU2", "Retail"), ("", "No code"), ("BU3", ""))
        res = _import(client, admin_event, "business-units", content)
        assert res.status_code == 207
        data = res.get_json()["data"]
        assert (data["imported"], data["failed"]) == (1, 2)
        failed = data["rows"][1]
        assert (failed["row"], failed["action"]) == (3, "failed")
        assert failed["errors"] == ["Code is required"]
        assert failed["data"]["name"] == "No code"
        assert data["rows"][2]["errors"] == ["Name is required"]
        assert BusinessUnit.query.count() == 1

    def test_blank_rows_skipped(self, client, admin_event):
        content = workbook(["Code", "Name"], ("BU2", "Retail"), (None, None), ("BU3", "Wholesale"))
        data = _import(client, admin_event, "business-units", content).get_json()["data"]
        assert data["total_rows"] == 2
        assert [r["row"] for r in data["rows"]] == [2, 4]

    def test_duplicate_in_same_file(self, client, admin_event):
        content = workbook(["Code", "Name"], ("BU2", "Retail"), ("BU2", "Again"))
        data = _import(client, admin_event, "business-units", content).get_json()["data"]
        assert data["rows"][1]["errors"] == ["Business Unit 'BU2' already exists"]

    def test_existing_code_fails_skips_or_updates(self, client, admin_event, org):
        content = workbook(["Code", "Name", "IsActive"], ("BU1", "Renamed", False))

        data = _import(client, admin_event, "business-units", content).get_json()["data"]
        assert data["failed"] == 1

        data = _import(client, admin_event, "business-units", content,
                       skip_duplicates="true").get_json()["data"]
        assert data["skipped"] == 1
        assert BusinessUnit.query.filter_by(code="BU1").one().name == "Corporate"

        res = _import(client, admin_event, "business-units", content, update_existing="true")
        assert res.get_json()["data"]["updated"] == 1
        bu = BusinessUnit.query.filter_by(code="BU1").one()
        assert bu.name == "Renamed"
        assert bu.is_active is False

    def test_divisions_resolve_business_unit_code(self, client, admin_event, org):
        content = workbook(["Code", "Name", "Business Unit Code"],
                           ("DIV2", "Sales", "BU1"), ("DIV3", "Lost", "NOPE"))
        data = _import(client, admin_event, "divisions", content).get_json()["data"]
        assert data["rows"][1]["errors"] == ["Business Unit with code 'NOPE' not found"]
        division = Division.query.filter_by(code="DIV2").one()
        assert division.business_unit_id == org["business_unit_id"]

    def test_departments_resolve_division_code(self, client, admin_event, org):
        content = workbook(["Code", "Name", "Division Code"], ("DEP9", "Audit", "DIV1"))
        res = _import(client, admin_event, "departments", content)
        assert res.status_code == 200
        assert Department.query.filter_by(code="DEP9").one().division_id == org["division_id"]

    def test_missing_required_column(self, client, admin_event):
        res = _import(client, admin_event, "divisions", workbook(["Code", "Name"], ("DIV2", "Sales")))
        assert res.status_code == 400
        error = res.get_json()["error"]
        assert error["message"] == "Missing required columns: Business Unit Code"
        assert error["details"]["missing_columns"] == ["Business Unit Code"]

    def test_header_only(self, client, admin_event):
        res = _import(client, admin_event, "functions", workbook(["Code", "Name"]))
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "Excel file has no data rows"

    def test_not_a_workbook(self, client, admin_event):
        res = _import(client, admin_event, "applications", b"Code,Name\nAPP,App\n")
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "File is not a readable Excel workbook"

    def test_file_required(self, client, admin_event):
        res = client.post("/api/v1/bulk-import/applications", data={},
                          content_type="multipart/form-data", headers=admin_event)
        assert res.status_code == 400
        assert res.get_json()["error"]["message"] == "File is required"

    def test_it_lead_forbidden(self, client, it_lead):
        res = _import(client, it_lead, "business-units", workbook(["Code", "Name"], ("BU2", "Retail")))
        assert res.status_code == 403


class TestUserImport:
    def test_users_with_per_row_results(self, client, super_admin, org, attempt_login):
        content = workbook(
            USER_HEADERS,
            ("jdoe", "John Doe", "JDoe@Example.com", "ITLead", True, False, "long-enough-1", "DEP1"),
            ("short", "Short Pass", "short@example.com", "AdminEvent", "true", "false", "abc", ""),
            ("badrole", "Bad Role", "bad@example.com", "Owner", "true", "false", "long-enough-1", ""),
            (2091, "Firman", "firman@example.com", "AdminEvent", "true", "true", "", ""),
        )
        res = _import(client, super_admin, "users", content)
        assert res.status_code == 207
        data = res.get_json()["data"]
        assert (data["imported"], data["failed"]) == (2, 2)
        assert "Password must be at least 8 characters" in data["rows"][1]["errors"][0]
        assert data["rows"][2]["errors"][0].startswith("Role must be one of")
        assert all("password" not in row["data"] for row in data["rows"])

        jdoe = User.query.filter_by(username="jdoe").one()
        assert jdoe.email == "JDoe@example.com"
        assert jdoe.department_id == org["department_id"]
        assert attempt_login("jdoe", "long-enough-1").status_code == 200

        ldap_user = User.query.filter_by(username="2091").one()
        assert ldap_user.use_ldap is True
        assert ldap_user.password_hash is None

    def test_unknown_department_fails_row(self, client, super_admin, org):
        content = workbook(USER_HEADERS, ("jdoe", "John Doe", "jdoe@example.com", "ITLead",
                                          "true", "false", "long-enough-1", "NOPE"))
        data = _import(client, super_admin, "users", content).get_json()["data"]
        assert data["rows"][0]["errors"] == ["Department with code 'NOPE' not found"]
        assert User.query.filter_by(username="jdoe").count() == 0

    def test_admin_event_cannot_import_users(self, client, admin_event):
        content = workbook(USER_HEADERS, ("jdoe", "John Doe", "jdoe@example.com", "ITLead",
                                          "true", "false", "long-enough-1", ""))
        assert _import(client, admin_event, "users", content).status_code == 403


class TestMappingImport:
    def _mappings(self, client, headers, mapping_type, content, **form):
        return _upload(client, headers, "/api/v1/mappings/bulk-import", content,
                       mapping_type=mapping_type, **form)

    def test_function_application(self, client, admin_event, org):
        content = workbook(["Function Code", "Application Code"],
                           ("FN1", "BI"), ("FN1", "ERP"), ("FN1", "NOPE"))
        res = self._mappings(client, admin_event, "function-application", content)
        assert res.status_code == 207
        rows = res.get_json()["data"]["rows"]
        assert [r["action"] for r in rows] == ["imported", "failed", "failed"]
        assert rows[1]["errors"] == ["Mapping 'FN1 / ERP' already exists"]
        assert rows[2]["errors"] == ["Application with code 'NOPE' not found"]
        assert FunctionApplicationMapping.query.filter_by(
            function_id=org["function_id"], application_id=org["unmapped_app_id"],
        ).count() == 1

    def test_existing_mappings_skipped(self, client, admin_event, org):
        content = workbook(["Function Code", "Application Code"], ("FN1", "ERP"))
        res = self._mappings(client, admin_event, "function-application", content,
                             skip_duplicates="true")
        assert res.status_code == 200
        assert res.get_json()["data"]["skipped"] == 1

    def test_application_department(self, client, admin_event, org):
        content = workbook(["Application Code", "Department Code", "Division Code"],
                           ("BI", "DEP2", "DIV1"))
        res = self._mappings(client, admin_event, "application-department", content)
        assert res.status_code == 200
        mapping = ApplicationDepartmentMapping.query.filter_by(
            application_id=org["unmapped_app_id"],
        ).one()
        assert mapping.department_id == org["other_department_id"]
        assert mapping.created_by == User.query.filter_by(username="eventadmin").one().id

    @pytest.mark.parametrize("mapping_type", ["", "users", "function_application"])
    def test_invalid_mapping_type(self, client, admin_event, mapping_type):
        content = workbook(["Function Code", "Application Code"], ("FN1", "BI"))
        res = self._mappings(client, admin_event, mapping_type, content)
        assert res.status_code == 400
        assert res.get_json()["error"]["message"].startswith("Invalid mapping type")


class TestTemplates:
    def test_user_template(self, client, super_admin):
        res = client.get("/api/v1/users/template", headers=super_admin)
        assert res.status_code == 200
        assert res.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        assert "master-user-template.xlsx" in res.headers["Content-Disposition"]
        rows = list(load_workbook(io.BytesIO(res.data)).active.iter_rows(values_only=True))
        assert list(rows[0]) == USER_HEADERS
        assert rows[1][3] == "AdminEvent"

    def test_template_imports_cleanly(self, client, admin_event):
        template = client.get("/api/v1/bulk-import/business-units/template", headers=admin_event).data
        res = _import(client, admin_event, "business-units", template)
        assert res.status_code == 200
        assert BusinessUnit.query.one().code == "BU-CORP"

    def test_mapping_template(self, client, admin_event):
        res = client.get("/api/v1/mappings/bulk-import/template?mapping_type=application-department",
                         headers=admin_event)
        header = next(load_workbook(io.BytesIO(res.data)).active.iter_rows(values_only=True))
        assert list(header) == ["Application Code", "Department Code", "Division Code"]

    def test_unknown_mapping_template(self, client, admin_event):
        res = client.get("/api/v1/mappings/bulk-import/template?mapping_type=users", headers=admin_event)
        assert res.status_code == 400
