"""
User Service — CRUD, role assignment, password and LDAP flag management.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import ROLES, User
from csi_portal.models.org import BusinessUnit, Department, Division
from csi_portal.services.jwt_service import revoke_all_user_sessions
from csi_portal.utils.crypto import hash_password
from csi_portal.utils.helpers import get_or_404, parse_bool

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

_ORG_FIELDS = (
    ("business_unit_id", BusinessUnit, "BusinessUnit"),
    ("division_id", Division, "Division"),
    ("department_id", Department, "Department"),
)


def _normalize_email(email):
    if email in (None, ""):
        return None
    try:
        return validate_email(str(email).strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"})


def _check_password(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too_short"},
        )


def _apply_org_fields(user: User, data: dict):
    for field, model, label in _ORG_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if value in (None, ""):
            setattr(user, field, None)
            continue
        if db.session.get(model, value) is None:
            raise NotFoundError(label, value)
        setattr(user, field, value)


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_users(role=None, is_active=None, search=None) -> list[User]:
    q = User.query
    if role:
        q = q.filter(User.role == role)
    active = parse_bool(is_active)
    if active is not None:
        q = q.filter(User.is_active == active)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            User.username.ilike(pattern),
            User.display_name.ilike(pattern),
            User.email.ilike(pattern),
        ))
    return q.order_by(User.display_name).all()


def get_user(user_id: int) -> User:
    return get_or_404(User, user_id, "User")


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════
def create_user(data: dict) -> User:
    """Create a user. Local users need a password, LDAP users must not."""
    username = (data.get("username") or "").strip()
    display_name = (data.get("display_name") or "").strip()
    if not username:
        raise ValidationError("username is required", details={"username": "required"})
    if not display_name:
        raise ValidationError("display_name is required", details={"display_name": "required"})

    role = data.get("role")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(ROLES))}")

    use_ldap = bool(parse_bool(data.get("use_ldap"), False))
    password = data.get("password")
    if not use_ldap:
        _check_password(password)

    if User.query.filter_by(username=username).first():
        raise ConflictError(resource="User", field="username", value=username)

    user = User(
        username=username,
        display_name=display_name,
        email=_normalize_email(data.get("email")),
        role=role,
        use_ldap=use_ldap,
        password_hash=hash_password(password) if password and not use_ldap else None,
        is_active=bool(parse_bool(data.get("is_active"), True)),
    )
    _apply_org_fields(user, data)
    db.session.add(user)
    db.session.commit()
    logger.info("User created: %s (%s)", user.username, user.role)
    return user


def update_user(user_id: int, data: dict) -> User:
    user = get_user(user_id)

    if "username" in data:
        username = (data.get("username") or "").strip()
        if not username:
            raise ValidationError("username cannot be empty")
        clash = User.query.filter(User.username == username, User.id != user.id).first()
        if clash:
            raise ConflictError(resource="User", field="username", value=username)
        user.username = username
    if "display_name" in data:
        display_name = (data.get("display_name") or "").strip()
        if not display_name:
            raise ValidationError("display_name cannot be empty")
        user.display_name = display_name
    if "email" in data:
        user.email = _normalize_email(data.get("email"))
    if "role" in data:
        if data["role"] not in ROLES:
            raise ValidationError(f"role must be one of: {', '.join(sorted(ROLES))}")
        user.role = data["role"]
    if "use_ldap" in data:
        user.use_ldap = bool(parse_bool(data["use_ldap"], False))
    if "is_active" in data:
        user.is_active = bool(parse_bool(data["is_active"], True))
    _apply_org_fields(user, data)

    db.session.commit()
    if not user.is_active:
        revoke_all_user_sessions(user.id)
    return user


def delete_user(user_id: int) -> User:
    """Soft delete: deactivate the user and close every session."""
    user = get_user(user_id)
    user.is_active = False
    db.session.commit()
    revoke_all_user_sessions(user.id)
    logger.info("User deactivated: %s", user.username)
    return user


def toggle_ldap(user_id: int, use_ldap) -> User:
    user = get_user(user_id)
    flag = parse_bool(use_ldap)
    if flag is None:
        raise ValidationError("use_ldap is required")
    user.use_ldap = flag
    db.session.commit()
    return user


def set_password(user_id: int, password: str) -> User:
    user = get_user(user_id)
    if user.use_ldap:
        raise ValidationError("Cannot set a local password for an LDAP user")
    _check_password(password)
    user.password_hash = hash_password(password)
    db.session.commit()
    revoke_all_user_sessions(user.id)
    logger.info("Password reset for %s", user.username)
    return user
