"""
CSI Portal
Organisation master data — business units, divisions, departments,
functions, applications and the two many-to-many mapping tables.

Hierarchy:
    BusinessUnit ─1:N─ Division ─1:N─ Department
    Function ─N:M─ Application ─N:M─ Department
"""

from csi_portal.models import db
from csi_portal.utils.helpers import isoformat, utcnow


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BusinessUnit(TimestampMixin, db.Model):
    __tablename__ = "business_units"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    divisions = db.relationship("Division", back_populates="business_unit", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<BusinessUnit {self.code}>"


class Division(TimestampMixin, db.Model):
    __tablename__ = "divisions"
    __table_args__ = (
        db.UniqueConstraint("business_unit_id", "code", name="uq_division_bu_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    business_unit_id = db.Column(
        db.Integer, db.ForeignKey("business_units.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    business_unit = db.relationship("BusinessUnit", back_populates="divisions")
    departments = db.relationship("Department", back_populates="division", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "business_unit_id": self.business_unit_id,
            "business_unit_name": self.business_unit.name if self.business_unit else None,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Division {self.code}>"


class Department(TimestampMixin, db.Model):
    __tablename__ = "departments"
    __table_args__ = (
        db.UniqueConstraint("division_id", "code", name="uq_department_division_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    division_id = db.Column(
        db.Integer, db.ForeignKey("divisions.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    division = db.relationship("Division", back_populates="departments")

    def to_dict(self):
        return {
            "id": self.id,
            "division_id": self.division_id,
            "division_name": self.division.name if self.division else None,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Department {self.code}>"


class Function(TimestampMixin, db.Model):
    """An IT function (e.g. "ERP Support"), led by an IT department head
    who reviews takeout proposals for the applications it owns."""

    __tablename__ = "functions"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    it_dept_head_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    it_dept_head = db.relationship("User", foreign_keys=[it_dept_head_user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "it_dept_head_user_id": self.it_dept_head_user_id,
            "it_dept_head_name": self.it_dept_head.display_name if self.it_dept_head else None,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Function {self.code}>"


class Application(TimestampMixin, db.Model):
    __tablename__ = "applications"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Application {self.code}>"


class FunctionApplicationMapping(db.Model):
    __tablename__ = "function_application_mappings"
    __table_args__ = (
        db.UniqueConstraint("function_id", "application_id", name="uq_function_application"),
    )

    id = db.Column(db.Integer, primary_key=True)
    function_id = db.Column(
        db.Integer, db.ForeignKey("functions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    function = db.relationship("Function")
    application = db.relationship("Application")

    def to_dict(self):
        return {
            "id": self.id,
            "function_id": self.function_id,
            "function_name": self.function.name if self.function else None,
            "application_id": self.application_id,
            "application_name": self.application.name if self.application else None,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<FunctionApplicationMapping f={self.function_id} a={self.application_id}>"


class ApplicationDepartmentMapping(db.Model):
    __tablename__ = "application_department_mappings"
    __table_args__ = (
        db.UniqueConstraint("application_id", "department_id", name="uq_application_department"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    application = db.relationship("Application")
    department = db.relationship("Department")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "application_name": self.application.name if self.application else None,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<ApplicationDepartmentMapping a={self.application_id} d={self.department_id}>"
