"""
CSI Portal
Master Data Service — business units, divisions, departments, functions
and applications.

Every entity has a ``code`` and a ``name``. Codes are unique globally
(BU, function, application) or within their parent (division within BU,
department within division). Deletes are refused while children,
mappings or responses still reference the row.
"""

import logging

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import User
from csi_portal.models.org import (
    Application,
    ApplicationDepartmentMapping,
    BusinessUnit,
    Department,
    Division,
    Function,
    FunctionApplicationMapping,
)
from csi_portal.models.response import Response
from csi_portal.utils.helpers import get_or_404, parse_bool, parse_int

logger = logging.getLogger(__name__)


def _require_code_name(data: dict, partial: bool = False) -> dict:
    out = {}
    for field in ("code", "name"):
        if field in data or not partial:
            value = (data.get(field) or "").strip()
            if not value:
                raise ValidationError(f"{field} is required", details={field: "required"})
            out[field] = value
    return out


def _apply_is_active(obj, data: dict):
    if "is_active" in data:
        obj.is_active = bool(parse_bool(data["is_active"], True))


def _commit_created(obj, label):
    db.session.add(obj)
    db.session.commit()
    logger.info("%s created: %s", label, obj.code)
    return obj


# ═════════════════════════════════════════════════════════════════════════════
# Business units
# ═════════════════════════════════════════════════════════════════════════════

def list_business_units(is_active=None):
    q = BusinessUnit.query
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(BusinessUnit.is_active == active)
    return q.order_by(BusinessUnit.name).all()


def get_business_unit(bu_id):
    return get_or_404(BusinessUnit, bu_id, "BusinessUnit")


def _check_bu_code(code, exclude_id=None):
    q = BusinessUnit.query.filter(BusinessUnit.code == code)
    if exclude_id:
        q = q.filter(BusinessUnit.id != exclude_id)
    if q.first():
        raise ConflictError(resource="BusinessUnit", field="code", value=code)


def create_business_unit(data):
    fields = _require_code_name(data)
    _check_bu_code(fields["code"])
    bu = BusinessUnit(**fields)
    _apply_is_active(bu, data)
    return _commit_created(bu, "BusinessUnit")


def update_business_unit(bu_id, data):
    bu = get_business_unit(bu_id)
    fields = _require_code_name(data, partial=True)
    if "code" in fields:
        _check_bu_code(fields["code"], exclude_id=bu.id)
    for key, value in fields.items():
        setattr(bu, key, value)
    _apply_is_active(bu, data)
    db.session.commit()
    return bu


def delete_business_unit(bu_id):
    bu = get_business_unit(bu_id)
    if bu.divisions.count():
        raise ConflictError("Cannot delete business unit with existing divisions")
    if Response.query.filter_by(business_unit_id=bu.id).first():
        raise ConflictError("Cannot delete business unit referenced by responses")
    db.session.delete(bu)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Divisions
# ═════════════════════════════════════════════════════════════════════════════

def list_divisions(business_unit_id=None, is_active=None):
    q = Division.query
    bu_id = parse_int(business_unit_id)
    if bu_id:
        q = q.filter(Division.business_unit_id == bu_id)
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(Division.is_active == active)
    return q.order_by(Division.name).all()


def get_division(division_id):
    return get_or_404(Division, division_id, "Division")


def _check_division_code(bu_id, code, exclude_id=None):
    q = Division.query.filter(Division.business_unit_id == bu_id, Division.code == code)
    if exclude_id:
        q = q.filter(Division.id != exclude_id)
    if q.first():
        raise ConflictError(resource="Division", field="code", value=code)


def create_division(data):
    fields = _require_code_name(data)
    bu_id = parse_int(data.get("business_unit_id"))
    if not bu_id:
        raise ValidationError("business_unit_id is required")
    get_business_unit(bu_id)
    _check_division_code(bu_id, fields["code"])
    division = Division(business_unit_id=bu_id, **fields)
    _apply_is_active(division, data)
    return _commit_created(division, "Division")


def update_division(division_id, data):
    division = get_division(division_id)
    fields = _require_code_name(data, partial=True)
    bu_id = division.business_unit_id
    if data.get("business_unit_id") is not None:
        bu_id = parse_int(data["business_unit_id"])
        get_business_unit(bu_id)
    if "code" in fields or bu_id != division.business_unit_id:
        _check_division_code(bu_id, fields.get("code", division.code), exclude_id=division.id)
    division.business_unit_id = bu_id
    for key, value in fields.items():
        setattr(division, key, value)
    _apply_is_active(division, data)
    db.session.commit()
    return division


def delete_division(division_id):
    division = get_division(division_id)
    if division.departments.count():
        raise ConflictError("Cannot delete division with existing departments")
    if Response.query.filter_by(division_id=division.id).first():
        raise ConflictError("Cannot delete division referenced by responses")
    db.session.delete(division)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Departments
# ═════════════════════════════════════════════════════════════════════════════

def list_departments(division_id=None, is_active=None):
    q = Department.query
    div_id = parse_int(division_id)
    if div_id:
        q = q.filter(Department.division_id == div_id)
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(Department.is_active == active)
    return q.order_by(Department.name).all()


def get_department(department_id):
    return get_or_404(Department, department_id, "Department")


def _check_department_code(division_id, code, exclude_id=None):
    q = Department.query.filter(Department.division_id == division_id, Department.code == code)
    if exclude_id:
        q = q.filter(Department.id != exclude_id)
    if q.first():
        raise ConflictError(resource="Department", field="code", value=code)


def create_department(data):
    fields = _require_code_name(data)
    div_id = parse_int(data.get("division_id"))
    if not div_id:
        raise ValidationError("division_id is required")
    get_division(div_id)
    _check_department_code(div_id, fields["code"])
    department = Department(division_id=div_id, **fields)
    _apply_is_active(department, data)
    return _commit_created(department, "Department")


def update_department(department_id, data):
    department = get_department(department_id)
    fields = _require_code_name(data, partial=True)
    div_id = department.division_id
    if data.get("division_id") is not None:
        div_id = parse_int(data["division_id"])
        get_division(div_id)
    if "code" in fields or div_id != department.division_id:
        _check_department_code(div_id, fields.get("code", department.code), exclude_id=department.id)
    department.division_id = div_id
    for key, value in fields.items():
        setattr(department, key, value)
    _apply_is_active(department, data)
    db.session.commit()
    return department


def delete_department(department_id):
    department = get_department(department_id)
    if ApplicationDepartmentMapping.query.filter_by(department_id=department.id).first():
        raise ConflictError("Cannot delete department with application mappings")
    if Response.query.filter_by(department_id=department.id).first():
        raise ConflictError("Cannot delete department referenced by responses")
    if User.query.filter_by(department_id=department.id).first():
        raise ConflictError("Cannot delete department with assigned users")
    db.session.delete(department)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Functions
# ═════════════════════════════════════════════════════════════════════════════

def list_functions(is_active=None):
    q = Function.query
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(Function.is_active == active)
    return q.order_by(Function.name).all()


def get_function(function_id):
    return get_or_404(Function, function_id, "Function")


def _check_function_code(code, exclude_id=None):
    q = Function.query.filter(Function.code == code)
    if exclude_id:
        q = q.filter(Function.id != exclude_id)
    if q.first():
        raise ConflictError(resource="Function", field="code", value=code)


def _resolve_dept_head(value):
    if value in (None, ""):
        return None
    user = db.session.get(User, parse_int(value))
    if user is None:
        raise NotFoundError("User", value)
    return user.id


def create_function(data):
    fields = _require_code_name(data)
    _check_function_code(fields["code"])
    function = Function(
        it_dept_head_user_id=_resolve_dept_head(data.get("it_dept_head_user_id")),
        **fields,
    )
    _apply_is_active(function, data)
    return _commit_created(function, "Function")


def update_function(function_id, data):
    function = get_function(function_id)
    fields = _require_code_name(data, partial=True)
    if "code" in fields:
        _check_function_code(fields["code"], exclude_id=function.id)
    for key, value in fields.items():
        setattr(function, key, value)
    if "it_dept_head_user_id" in data:
        function.it_dept_head_user_id = _resolve_dept_head(data["it_dept_head_user_id"])
    _apply_is_active(function, data)
    db.session.commit()
    return function


def delete_function(function_id):
    function = get_function(function_id)
    if FunctionApplicationMapping.query.filter_by(function_id=function.id).first():
        raise ConflictError("Cannot delete function with application mappings")
    db.session.delete(function)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════════════

def list_applications(is_active=None):
    q = Application.query
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(Application.is_active == active)
    return q.order_by(Application.name).all()


def get_application(application_id):
    return get_or_404(Application, application_id, "Application")


def _check_application_code(code, exclude_id=None):
    q = Application.query.filter(Application.code == code)
    if exclude_id:
        q = q.filter(Application.id != exclude_id)
    if q.first():
        raise ConflictError(resource="Application", field="code", value=code)


def create_application(data):
    fields = _require_code_name(data)
    _check_application_code(fields["code"])
    app_ = Application(description=data.get("description"), **fields)
    _apply_is_active(app_, data)
    return _commit_created(app_, "Application")


def update_application(application_id, data):
    app_ = get_application(application_id)
    fields = _require_code_name(data, partial=True)
    if "code" in fields:
        _check_application_code(fields["code"], exclude_id=app_.id)
    for key, value in fields.items():
        setattr(app_, key, value)
    if "description" in data:
        app_.description = data["description"]
    _apply_is_active(app_, data)
    db.session.commit()
    return app_


def delete_application(application_id):
    app_ = get_application(application_id)
    if (FunctionApplicationMapping.query.filter_by(application_id=app_.id).first()
            or ApplicationDepartmentMapping.query.filter_by(application_id=app_.id).first()):
        raise ConflictError("Cannot delete application with existing mappings")
    if Response.query.filter_by(application_id=app_.id).first():
        raise ConflictError("Cannot delete application referenced by responses")
    db.session.delete(app_)
    db.session.commit()
