"""
Permission Decorators — role-based access control for route protection.

Every permission maps to the set of roles allowed to use it. SuperAdmin
is *not* an implicit superuser: it only holds the permissions listed
below (user administration, audit, read access to master data and
surveys, reports).

Usage:
    @bp.route("/surveys", methods=["POST"])
    @require_permission("surveys:create")
    def create_survey():
        ...

    @bp.route("/scheduler/trigger", methods=["POST"])
    @require_role(ROLE_ADMIN_EVENT)
    def trigger():
        ...

    @bp.route("/auth/me", methods=["GET"])
    @require_auth
    def me():
        ...
"""

import functools
import logging

from flask import g

from csi_portal.core.exceptions import AuthenticationError, AuthorizationError
from csi_portal.models.auth import (
    ROLE_ADMIN_EVENT,
    ROLE_DEPARTMENT_HEAD,
    ROLE_IT_LEAD,
    ROLE_SUPER_ADMIN,
)

logger = logging.getLogger(__name__)

_ALL_ROLES = frozenset({ROLE_SUPER_ADMIN, ROLE_ADMIN_EVENT, ROLE_IT_LEAD, ROLE_DEPARTMENT_HEAD})
_ADMINS = frozenset({ROLE_ADMIN_EVENT, ROLE_SUPER_ADMIN})

ROLE_PERMISSIONS: dict[str, frozenset] = {
    # User management
    "users:read": frozenset({ROLE_SUPER_ADMIN}),
    "users:create": frozenset({ROLE_SUPER_ADMIN}),
    "users:update": frozenset({ROLE_SUPER_ADMIN}),
    "users:delete": frozenset({ROLE_SUPER_ADMIN}),
    # Master data
    "master-data:read": _ADMINS,
    "master-data:create": frozenset({ROLE_ADMIN_EVENT}),
    "master-data:update": frozenset({ROLE_ADMIN_EVENT}),
    "master-data:delete": frozenset({ROLE_ADMIN_EVENT}),
    # Mappings
    "mappings:read": _ADMINS,
    "mappings:create": frozenset({ROLE_ADMIN_EVENT}),
    "mappings:delete": frozenset({ROLE_ADMIN_EVENT}),
    # Surveys
    "surveys:read": _ALL_ROLES,
    "surveys:create": _ADMINS,
    "surveys:update": _ADMINS,
    "surveys:delete": _ADMINS,
    # Responses
    "responses:read": frozenset({ROLE_ADMIN_EVENT, ROLE_IT_LEAD, ROLE_DEPARTMENT_HEAD}),
    "responses:propose-takeout": frozenset({ROLE_ADMIN_EVENT}),
    # Approvals
    "approvals:read": frozenset({ROLE_ADMIN_EVENT, ROLE_IT_LEAD}),
    "approvals:approve": frozenset({ROLE_IT_LEAD}),
    "approvals:reject": frozenset({ROLE_IT_LEAD}),
    # Best comments
    "best-comments:read": frozenset({ROLE_ADMIN_EVENT, ROLE_IT_LEAD, ROLE_DEPARTMENT_HEAD}),
    "best-comments:create": frozenset({ROLE_ADMIN_EVENT}),
    "best-comments:delete": frozenset({ROLE_ADMIN_EVENT}),
    "best-comments:feedback": frozenset({ROLE_IT_LEAD}),
    # Reports
    "reports:read": _ALL_ROLES,
    "reports:export": _ALL_ROLES,
    # Email
    "emails:send": frozenset({ROLE_ADMIN_EVENT}),
    # Audit
    "audit:read": frozenset({ROLE_SUPER_ADMIN}),
}


def has_permission(user, permission: str) -> bool:
    return user is not None and user.role in ROLE_PERMISSIONS.get(permission, ())


def _current_user_or_401():
    user = getattr(g, "current_user", None)
    if user is None:
        raise AuthenticationError(getattr(g, "auth_error", None) or "Authentication required")
    return user


def require_auth(f):
    """Decorator: any authenticated user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _current_user_or_401()
        return f(*args, **kwargs)
    return decorated


def require_permission(permission: str):
    """
    Decorator: require the authenticated user's role to hold *permission*.

    Args:
        permission: Permission name, e.g. "surveys:create"
    """
    if permission not in ROLE_PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _current_user_or_401()
            if not has_permission(user, permission):
                logger.warning(
                    "User %s (%s) denied: missing permission '%s' on %s",
                    user.username, user.role, permission, f.__name__,
                )
                raise AuthorizationError(f"Permission denied: {permission}")
            return f(*args, **kwargs)
        return decorated
    return decorator



def require_role(*roles: str):
    """Decorator: require the authenticated user to hold one of *roles*."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _current_user_or_401()
            if user.role not in roles:
                logger.warning(
                    "User %s (%s) denied: role not in %s on %s",
                    user.username, user.role, ", ".join(roles), f.__name__,
                )
                raise AuthorizationError("Insufficient role")
            return f(*args, **kwargs)
        return decorated
    return decorator
