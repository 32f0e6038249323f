"""
CSI Portal
Bulk Import Service — Excel (.xlsx) import of master data, users and mappings.

Features:
  - One sheet per upload; the first worksheet is read, row 1 holds headers
  - Entity types: business-units, divisions, departments, functions,
    applications, users, function-application, application-department
  - Parents and mapping ends are referenced by code (users by username)
  - Per-row validation and per-row savepoints: a bad row is reported and
    skipped, the remaining rows are still imported
  - Duplicates fail the row unless ``skip_duplicates`` or
    ``update_existing`` is set
  - Template workbooks with the expected headers and one example row
"""

import io
import logging
from datetime import date, datetime
from zipfile import BadZipFile

from email_validator import EmailNotValidError, validate_email
from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import IntegrityError

from csi_portal.core.exceptions import CSIPortalError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import ROLES, User
from csi_portal.models.org import (
    Application,
    ApplicationDepartmentMapping,
    BusinessUnit,
    Department,
    Division,
    Function,
    FunctionApplicationMapping,
)
from csi_portal.services.export_service import HEADER_FILL, HEADER_FONT
from csi_portal.services.user_service import MIN_PASSWORD_LENGTH
from csi_portal.utils.crypto import hash_password
from csi_portal.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 50
MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500

MAPPING_TYPES = ("function-application", "application-department")

# header → field; required headers must be present in the sheet
_COLUMNS = {
    "business-units": {"Code": "code", "Name": "name", "IsActive": "is_active"},
    "divisions": {
        "Code": "code", "Name": "name", "Business Unit Code": "business_unit_code",
        "IsActive": "is_active",
    },
    "departments": {
        "Code": "code", "Name": "name", "Division Code": "division_code",
        "Business Unit Code": "business_unit_code", "IsActive": "is_active",
    },
    "functions": {
        "Code": "code", "Name": "name", "IT Lead Username": "it_lead_username",
        "IsActive": "is_active",
    },
    "applications": {
        "Code": "code", "Name": "name", "Description": "description", "IsActive": "is_active",
    },
    "users": {
        "Username": "username", "DisplayName": "display_name", "Email": "email",
        "Role": "role", "IsActive": "is_active", "UseLDAP": "use_ldap",
        "Password": "password", "Department Code": "department_code",
    },
    "function-application": {
        "Function Code": "function_code", "Application Code": "application_code",
    },
    "application-department": {
        "Application Code": "application_code", "Department Code": "department_code",
        "Division Code": "division_code",
    },
}

_REQUIRED = {
    "business-units": ("Code", "Name"),
    "divisions": ("Code", "Name", "Business Unit Code"),
    "departments": ("Code", "Name", "Division Code"),
    "functions": ("Code", "Name"),
    "applications": ("Code", "Name"),
    "users": ("Username", "DisplayName", "Email", "Role"),
    "function-application": ("Function Code", "Application Code"),
    "application-department": ("Application Code", "Department Code"),
}

_EXAMPLES = {
    "business-units": ["BU-CORP", "Corporate", "true"],
    "divisions": ["DIV-OPS", "Operations", "BU-CORP", "true"],
    "departments": ["DEP-FIN", "Finance", "DIV-OPS", "BU-CORP", "true"],
    "functions": ["FN-ERP", "ERP Services", "itlead", "true"],
    "applications": ["APP-ERP", "ERP Suite", "Finance and logistics ERP", "true"],
    "users": ["2091", "Firman", "firman@example.com", "AdminEvent", "true", "false",
              "change-me-123", "DEP-FIN"],
    "function-application": ["FN-ERP", "APP-ERP"],
    "application-department": ["APP-ERP", "DEP-FIN", "DIV-OPS"],
}

ENTITY_TYPES = tuple(_COLUMNS)

_SECRET_FIELDS = frozenset({"password"})


# ═══════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════

def _check_entity_type(entity_type):
    if entity_type not in _COLUMNS:
        raise ValidationError(
            f"entity type must be one of: {', '.join(ENTITY_TYPES)}",
            details={"entity_type": entity_type},
        )


def generate_template(entity_type: str) -> bytes:
    """Workbook with the header row and one example row for *entity_type*."""
    _check_entity_type(entity_type)
    wb = Workbook()
    ws = wb.active
    ws.title = entity_type.replace("-", " ").title()[:31]
    headers = list(_COLUMNS[entity_type])
    ws.append(headers)
    ws.append(_EXAMPLES[entity_type])
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        ws.column_dimensions[get_column_letter(col)].width = max(len(header) + 4, 14)
    ws.freeze_panes = "A2"
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════
# Parsing & validation
# ═══════════════════════════════════════════════════════════════

def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def parse_workbook(content: bytes, entity_type: str) -> list[dict]:
    """
    Read the first worksheet into ``[{"row": n, "data": {...}}]``.

    Fully blank rows are skipped; row numbers are the sheet's own.
    """
    _check_entity_type(entity_type)
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise ValidationError("File is not a readable Excel workbook") from exc

    try:
        rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            raise ValidationError("Excel file is empty")
        headers = [_cell_text(h) for h in header]
        missing = [c for c in _REQUIRED[entity_type] if c not in headers]
        if missing:
            raise ValidationError(
                f"Missing required columns: {', '.join(missing)}",
                details={"missing_columns": missing},
            )

        columns = _COLUMNS[entity_type]
        records = []
        for row_num, values in enumerate(rows, start=2):
            texts = [_cell_text(v) for v in values]
            if not any(texts):
                continue
            data = {}
            for header_name, text in zip(headers, texts):
                field = columns.get(header_name)
                if field:
                    data[field] = text
            records.append({"row": row_num, "data": data})
        return records
    finally:
        wb.close()


def _check_code_name(data, errors):
    code = data.get("code", "")
    if not code:
        errors.append("Code is required")
    elif len(code) > MAX_CODE_LENGTH:
        errors.append(f"Code must be {MAX_CODE_LENGTH} characters or less")
    name = data.get("name", "")
    if not name:
        errors.append("Name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Name must be {MAX_NAME_LENGTH} characters or less")


def _check_bool(data, field, label, errors):
    value = data.get(field, "")
    if value and value.lower() not in ("true", "false", "1", "0", "yes", "no"):
        errors.append(f"{label} must be true or false")


def validate_record(entity_type: str, data: dict) -> list[str]:
    """Row-level checks that need no database lookups."""
    errors: list[str] = []
    if entity_type in ("business-units", "functions", "applications", "divisions", "departments"):
        _check_code_name(data, errors)
        _check_bool(data, "is_active", "IsActive", errors)
    if entity_type == "divisions" and not data.get("business_unit_code"):
        errors.append("Business Unit Code is required")
    if entity_type == "departments" and not data.get("division_code"):
        errors.append("Division Code is required")
    if entity_type == "applications" and len(data.get("description", "")) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less")

    if entity_type == "users":
        if not data.get("username"):
            errors.append("Username is required")
        if not data.get("display_name"):
            errors.append("DisplayName is required")
        if not data.get("email"):
            errors.append("Email is required")
        else:
            try:
                validate_email(data["email"], check_deliverability=False)
            except EmailNotValidError as exc:
                errors.append(f"Invalid email: {exc}")
        if data.get("role") not in ROLES:
            errors.append(f"Role must be one of: {', '.join(sorted(ROLES))}")
        _check_bool(data, "is_active", "IsActive", errors)
        _check_bool(data, "use_ldap", "UseLDAP", errors)
        use_ldap = bool(parse_bool(data.get("use_ldap"), False))
        if not use_ldap and len(data.get("password", "")) < MIN_PASSWORD_LENGTH:
            errors.append(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters for non-LDAP users"
            )

    if entity_type == "function-application":
        if not data.get("function_code"):
            errors.append("Function Code is required")
        if not data.get("application_code"):
            errors.append("Application Code is required")
    if entity_type == "application-department":
        if not data.get("application_code"):
            errors.append("Application Code is required")
        if not data.get("department_code"):
            errors.append("Department Code is required")
    return errors


# ═══════════════════════════════════════════════════════════════
# Lookups by code
# ═══════════════════════════════════════════════════════════════

def _one_by_code(model, label, code, query=None):
    rows = (query if query is not None else model.query).filter(model.code == code).all()
    if not rows:
        raise ValidationError(f"{label} with code '{code}' not found")
    if len(rows) > 1:
        raise ValidationError(f"{label} code '{code}' is ambiguous; qualify it with its parent code")
    return rows[0]


def _division(code, business_unit_code=""):
    query = Division.query
    if business_unit_code:
        bu = _one_by_code(BusinessUnit, "Business Unit", business_unit_code)
        query = query.filter(Division.business_unit_id == bu.id)
    return _one_by_code(Division, "Division", code, query)


def _department(code, division_code=""):
    query = Department.query
    if division_code:
        query = query.join(Division).filter(Division.code == division_code)
    return _one_by_code(Department, "Department", code, query)


def _duplicate(label, key, skip_duplicates, update_existing):
    """Return "updated"/"skipped" for an existing row, or raise."""
    if update_existing:
        return "updated"
    if skip_duplicates:
        return "skipped"
    raise ValidationError(f"{label} '{key}' already exists")


def _active(data, obj):
    if data.get("is_active"):
        obj.is_active = bool(parse_bool(data["is_active"], True))


# ═══════════════════════════════════════════════════════════════
# Per-entity importers
# ═══════════════════════════════════════════════════════════════

def _import_code_name(model, label, data, options, *, parent=None, extra=None):
    query = model.query.filter(model.code == data["code"])
    if parent:
        query = query.filter_by(**parent)
    existing = query.first()
    fields = {"name": data["name"], **(extra or {})}
    if existing is not None:
        action = _duplicate(label, data["code"], **options)
        if action == "updated":
            for key, value in fields.items():
                setattr(existing, key, value)
            _active(data, existing)
        return action
    obj = model(code=data["code"], **(parent or {}), **fields)
    _active(data, obj)
    db.session.add(obj)
    return "imported"


def _import_business_unit(data, options, created_by=None):
    return _import_code_name(BusinessUnit, "Business Unit", data, options)


def _import_division(data, options, created_by=None):
    bu = _one_by_code(BusinessUnit, "Business Unit", data["business_unit_code"])
    return _import_code_name(Division, "Division", data, options,
                             parent={"business_unit_id": bu.id})


def _import_department(data, options, created_by=None):
    division = _division(data["division_code"], data.get("business_unit_code", ""))
    return _import_code_name(Department, "Department", data, options,
                             parent={"division_id": division.id})


def _import_function(data, options, created_by=None):
    extra = {}
    if data.get("it_lead_username"):
        lead = User.query.filter_by(username=data["it_lead_username"]).first()
        if lead is None:
            raise ValidationError(f"User '{data['it_lead_username']}' not found")
        extra["it_dept_head_user_id"] = lead.id
    return _import_code_name(Function, "Function", data, options, extra=extra)


def _import_application(data, options, created_by=None):
    return _import_code_name(Application, "Application", data, options,
                             extra={"description": data.get("description") or None})


def _import_user(data, options, created_by=None):
    use_ldap = bool(parse_bool(data.get("use_ldap"), False))
    fields = {
        "display_name": data["display_name"],
        "email": validate_email(data["email"], check_deliverability=False).normalized,
        "role": data["role"],
        "use_ldap": use_ldap,
    }
    if data.get("department_code"):
        fields["department_id"] = _department(data["department_code"]).id
    if not use_ldap and data.get("password"):
        fields["password_hash"] = hash_password(data["password"])
    elif use_ldap:
        fields["password_hash"] = None

    existing = User.query.filter_by(username=data["username"]).first()
    if existing is not None:
        action = _duplicate("User", data["username"], **options)
        if action == "updated":
            for key, value in fields.items():
                setattr(existing, key, value)
            _active(data, existing)
        return action
    user = User(username=data["username"], **fields)
    _active(data, user)
    db.session.add(user)
    return "imported"


def _import_function_application(data, options, created_by=None):
    function = _one_by_code(Function, "Function", data["function_code"])
    application = _one_by_code(Application, "Application", data["application_code"])
    existing = FunctionApplicationMapping.query.filter_by(
        function_id=function.id, application_id=application.id,
    ).first()
    if existing is not None:
        key = f"{data['function_code']} / {data['application_code']}"
        _duplicate("Mapping", key, **options)
        return "skipped"
    db.session.add(FunctionApplicationMapping(
        function_id=function.id, application_id=application.id, created_by=created_by,
    ))
    return "imported"


def _import_application_department(data, options, created_by=None):
    application = _one_by_code(Application, "Application", data["application_code"])
    department = _department(data["department_code"], data.get("division_code", ""))
    existing = ApplicationDepartmentMapping.query.filter_by(
        application_id=application.id, department_id=department.id,
    ).first()
    if existing is not None:
        key = f"{data['application_code']} / {data['department_code']}"
        _duplicate("Mapping", key, **options)
        return "skipped"
    db.session.add(ApplicationDepartmentMapping(
        application_id=application.id, department_id=department.id, created_by=created_by,
    ))
    return "imported"


_IMPORTERS = {
    "business-units": _import_business_unit,
    "divisions": _import_division,
    "departments": _import_department,
    "functions": _import_function,
    "applications": _import_application,
    "users": _import_user,
    "function-application": _import_function_application,
    "application-department": _import_application_department,
}


# ═══════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════

def import_workbook(
    content: bytes,
    entity_type: str,
    *,
    skip_duplicates: bool = False,
    update_existing: bool = False,
    created_by: int | None = None,
) -> dict:
    """
    Full pipeline: parse → validate → import, one savepoint per row.

    Returns counts plus one ``{row, action, errors, data}`` entry per
    data row, where action is imported, updated, skipped or failed.
    Passwords never appear in the echoed row data.
    """
    if not content:
        raise ValidationError("File is required")
    records = parse_workbook(content, entity_type)
    if not records:
        raise ValidationError("Excel file has no data rows")

    importer = _IMPORTERS[entity_type]
    options = {"skip_duplicates": skip_duplicates, "update_existing": update_existing}
    counts = {"imported": 0, "updated": 0, "skipped": 0, "failed": 0}
    rows = []

    for record in records:
        data = record["data"]
        errors = validate_record(entity_type, data)
        action = "failed"
        if not errors:
            try:
                with db.session.begin_nested():
                    action = importer(data, options, created_by=created_by)
            except CSIPortalError as exc:
                errors = [exc.message]
            except IntegrityError:
                logger.warning("Bulk import row %s of %s violated a constraint",
                               record["row"], entity_type)
                errors = ["Duplicate or constraint violation"]
        counts[action] += 1
        rows.append({
            "row": record["row"],
            "action": action,
            "errors": errors,
            "data": {k: v for k, v in data.items() if k not in _SECRET_FIELDS},
        })

    db.session.commit()
    logger.info(
        "Bulk import %s: %d rows, %d imported, %d updated, %d skipped, %d failed",
        entity_type, len(records), counts["imported"], counts["updated"],
        counts["skipped"], counts["failed"],
    )
    return {
        "entity_type": entity_type,
        "status": "completed" if not counts["failed"] else "partial",
        "total_rows": len(records),
        **counts,
        "rows": rows,
    }


def _check_mapping_type(mapping_type):
    if mapping_type not in MAPPING_TYPES:
        raise ValidationError(
            f'Invalid mapping type. Must be "{MAPPING_TYPES[0]}" or "{MAPPING_TYPES[1]}"',
            details={"mapping_type": mapping_type},
        )


def import_mappings(content: bytes, mapping_type: str, **kwargs) -> dict:
    _check_mapping_type(mapping_type)
    return import_workbook(content, mapping_type, **kwargs)


def generate_mapping_template(mapping_type: str) -> bytes:
    _check_mapping_type(mapping_type)
    return generate_template(mapping_type)
