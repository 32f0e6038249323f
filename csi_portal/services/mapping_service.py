"""
Mapping Service — Function ↔ Application and Application ↔ Department
many-to-many links, lookups in both directions, and CSV export.
"""

import csv
import io
import logging

from csi_portal.core.exceptions import ConflictError, ValidationError
from csi_portal.models import db
from csi_portal.models.org import (
    Application,
    ApplicationDepartmentMapping,
    Department,
    Function,
    FunctionApplicationMapping,
)
from csi_portal.utils.helpers import get_or_404, parse_int

logger = logging.getLogger(__name__)

EXPORT_KINDS = ("function-application", "application-department")


def _required_id(data, key):
    value = parse_int(data.get(key))
    if not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    return value


# ── Function ↔ Application ───────────────────────────────────────────────

def list_function_application(function_id=None, application_id=None):
    q = FunctionApplicationMapping.query
    if parse_int(function_id):
        q = q.filter(FunctionApplicationMapping.function_id == parse_int(function_id))
    if parse_int(application_id):
        q = q.filter(FunctionApplicationMapping.application_id == parse_int(application_id))
    return q.order_by(FunctionApplicationMapping.id).all()


def create_function_application(data, created_by=None):
    function_id = _required_id(data, "function_id")
    application_id = _required_id(data, "application_id")
    get_or_404(Function, function_id, "Function")
    get_or_404(Application, application_id, "Application")

    if FunctionApplicationMapping.query.filter_by(
        function_id=function_id, application_id=application_id,
    ).first():
        raise ConflictError("Mapping between this function and application already exists")

    mapping = FunctionApplicationMapping(
        function_id=function_id, application_id=application_id, created_by=created_by,
    )
    db.session.add(mapping)
    db.session.commit()
    logger.info("Function %s mapped to application %s", function_id, application_id)
    return mapping


def delete_function_application(mapping_id):
    mapping = get_or_404(FunctionApplicationMapping, mapping_id, "FunctionApplicationMapping")
    db.session.delete(mapping)
    db.session.commit()


def applications_by_function(function_id):
    get_or_404(Function, function_id, "Function")
    return (
        Application.query
        .join(FunctionApplicationMapping, FunctionApplicationMapping.application_id == Application.id)
        .filter(FunctionApplicationMapping.function_id == function_id)
        .order_by(Application.name)
        .all()
    )


def functions_by_application(application_id):
    get_or_404(Application, application_id, "Application")
    return (
        Function.query
        .join(FunctionApplicationMapping, FunctionApplicationMapping.function_id == Function.id)
        .filter(FunctionApplicationMapping.application_id == application_id)
        .order_by(Function.name)
        .all()
    )


# ── Application ↔ Department ─────────────────────────────────────────────

def list_application_department(application_id=None, department_id=None):
    q = ApplicationDepartmentMapping.query
    if parse_int(application_id):
        q = q.filter(ApplicationDepartmentMapping.application_id == parse_int(application_id))
    if parse_int(department_id):
        q = q.filter(ApplicationDepartmentMapping.department_id == parse_int(department_id))
    return q.order_by(ApplicationDepartmentMapping.id).all()


def create_application_department(data, created_by=None):
    application_id = _required_id(data, "application_id")
    department_id = _required_id(data, "department_id")
    get_or_404(Application, application_id, "Application")
    get_or_404(Department, department_id, "Department")

    if ApplicationDepartmentMapping.query.filter_by(
        application_id=application_id, department_id=department_id,
    ).first():
        raise ConflictError("Mapping between this application and department already exists")

    mapping = ApplicationDepartmentMapping(
        application_id=application_id, department_id=department_id, created_by=created_by,
    )
    db.session.add(mapping)
    db.session.commit()
    logger.info("Application %s mapped to department %s", application_id, department_id)
    return mapping


def delete_application_department(mapping_id):
    mapping = get_or_404(ApplicationDepartmentMapping, mapping_id, "ApplicationDepartmentMapping")
    db.session.delete(mapping)
    db.session.commit()


def departments_by_application(application_id):
    get_or_404(Application, application_id, "Application")
    return (
        Department.query
        .join(ApplicationDepartmentMapping, ApplicationDepartmentMapping.department_id == Department.id)
        .filter(ApplicationDepartmentMapping.application_id == application_id)
        .order_by(Department.name)
        .all()
    )


def applications_by_department(department_id, active_only=False):
    get_or_404(Department, department_id, "Department")
    q = (
        Application.query
        .join(ApplicationDepartmentMapping, ApplicationDepartmentMapping.application_id == Application.id)
        .filter(ApplicationDepartmentMapping.department_id == department_id)
    )
    if active_only:
        q = q.filter(Application.is_active.is_(True))
    return q.order_by(Application.name).all()


# ── Export ───────────────────────────────────────────────────────────────

def export_csv(kind: str) -> str:
    """Render one mapping table as CSV text with readable names."""
    if kind not in EXPORT_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(EXPORT_KINDS)}")

    buf = io.StringIO()
    writer = csv.writer(buf)
    if kind == "function-application":
        writer.writerow(["Function Code", "Function Name", "Application Code", "Application Name", "Created At"])
        for m in list_function_application():
            writer.writerow([
                m.function.code, m.function.name,
                m.application.code, m.application.name,
                m.created_at.isoformat() if m.created_at else "",
            ])
    else:
        writer.writerow(["Application Code", "Application Name", "Department Code", "Department Name", "Created At"])
        for m in list_application_department():
            writer.writerow([
                m.application.code, m.application.name,
                m.department.code, m.department.name,
                m.created_at.isoformat() if m.created_at else "",
            ])
    return buf.getvalue()
