"""
Auth Models — users and server-side sessions.

A session row is created at login and stores SHA-256 hashes of the
access and refresh tokens; a bearer token is only valid while its session
is active, inside the sliding ``expires_at`` and the hard ``max_expires_at``.
"""

from csi_portal.models import db
from csi_portal.utils.helpers import isoformat, utcnow

ROLE_SUPER_ADMIN = "SuperAdmin"
ROLE_ADMIN_EVENT = "AdminEvent"
ROLE_IT_LEAD = "ITLead"
ROLE_DEPARTMENT_HEAD = "DepartmentHead"

ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN_EVENT, ROLE_IT_LEAD, ROLE_DEPARTMENT_HEAD}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(30), nullable=False)
    use_ldap = db.Column(db.Boolean, default=False, nullable=False)
    password_hash = db.Column(db.String(256), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    business_unit_id = db.Column(
        db.Integer, db.ForeignKey("business_units.id", ondelete="SET NULL"), nullable=True,
    )
    division_id = db.Column(
        db.Integer, db.ForeignKey("divisions.id", ondelete="SET NULL"), nullable=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    business_unit = db.relationship("BusinessUnit", foreign_keys=[business_unit_id])
    division = db.relationship("Division", foreign_keys=[division_id])
    department = db.relationship("Department", foreign_keys=[department_id])

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "use_ldap": self.use_ldap,
            "is_active": self.is_active,
            "business_unit_id": self.business_unit_id,
            "division_id": self.division_id,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "last_login_at": isoformat(self.last_login_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"


class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token_hash = db.Column(db.String(64), nullable=False, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=True, index=True)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))
    last_activity = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    max_expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    invalidated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship("User")

    @property
    def is_expired(self) -> bool:
        now = utcnow()
        return now > self.expires_at or now > self.max_expires_at

    def invalidate(self):
        self.is_active = False
        self.invalidated_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "last_activity": isoformat(self.last_activity),
            "expires_at": isoformat(self.expires_at),
            "max_expires_at": isoformat(self.max_expires_at),
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Session {self.id} user={self.user_id} active={self.is_active}>"
