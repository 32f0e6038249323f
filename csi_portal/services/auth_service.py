"""
CSI Portal
Auth Service — login, token validation, refresh and logout.

All failures surface as ``AuthenticationError`` with a short reason; the
blueprint never inspects JWT exceptions directly.
"""

import logging

import jwt

from csi_portal.core.exceptions import AuthenticationError, ValidationError
from csi_portal.models import db
from csi_portal.models.auth import User
from csi_portal.services import audit_service
from csi_portal.services.jwt_service import (
    create_session,
    decode_access_token,
    decode_refresh_token,
    generate_token_pair,
    get_session_by_refresh_token,
    get_session_by_token,
    revoke_session,
    rotate_session_tokens,
    touch_session,
)
from csi_portal.utils.crypto import verify_password
from csi_portal.utils.helpers import utcnow

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


def _user_info(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "email": user.email,
        "role": user.role,
        "department_id": user.department_id,
    }


def login(username: str, password: str, ip_address=None, user_agent=None) -> dict:
    """Authenticate with username + password and open a session."""
    username = (username or "").strip()
    if not username or not password:
        raise ValidationError("Username and password are required")

    user = User.query.filter_by(username=username, is_active=True).first()
    if user is None:
        logger.warning("Login failed: unknown user %s", username)
        audit_service.log_auth_attempt(username, False)
        raise AuthenticationError(INVALID_CREDENTIALS)

    if user.use_ldap:
        logger.warning("Login refused: directory login not available for %s", username)
        audit_service.log_auth_attempt(username, False, user.id)
        raise AuthenticationError("Directory (LDAP) authentication is not available")

    if not verify_password(password, user.password_hash):
        logger.warning("Login failed: bad password for %s", username)
        audit_service.log_auth_attempt(username, False, user.id)
        raise AuthenticationError(INVALID_CREDENTIALS)

    tokens = generate_token_pair(user)
    user.last_login_at = utcnow()
    create_session(user, tokens, ip_address, user_agent)
    audit_service.log_auth_attempt(username, True, user.id)
    logger.info("Login successful for %s", username)

    return {**tokens, "user": _user_info(user)}


def validate_token(token: str) -> User:
    """Return the active user behind an access token or raise."""
    if not token:
        raise AuthenticationError("No authentication token provided")
    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid token") from exc

    session = get_session_by_token(token)
    if session is None:
        raise AuthenticationError("Session not found")
    if not session.is_active:
        raise AuthenticationError("Session has been invalidated")
    if session.is_expired:
        revoke_session(session)
        raise AuthenticationError("Session has expired")

    user = db.session.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        raise AuthenticationError("User not found")

    touch_session(session)
    return user


def refresh(refresh_token: str) -> dict:
    """Exchange a refresh token for a new pair; the session is rotated."""
    if not refresh_token:
        raise ValidationError("Refresh token is required")
    try:
        payload = decode_refresh_token(refresh_token)
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid or expired refresh token") from exc

    session = get_session_by_refresh_token(refresh_token)
    if session is None or not session.is_active:
        raise AuthenticationError("Session not found or revoked")
    if utcnow() > session.max_expires_at:
        revoke_session(session)
        raise AuthenticationError("Session expired")

    user = db.session.get(User, int(payload["sub"]))
    if user is None or not user.is_active:
        revoke_session(session)
        raise AuthenticationError("User inactive or not found")

    tokens = generate_token_pair(user)
    rotate_session_tokens(session, tokens)
    return {**tokens, "user": _user_info(user)}


def logout(token: str, user: User | None = None) -> bool:
    session = get_session_by_token(token) if token else None
    if session is None or not session.is_active:
        return False
    revoke_session(session)
    if user is not None:
        audit_service.log_logout(user.id, user.username)
    logger.info("User %s logged out", user.username if user else session.user_id)
    return True


def user_info(user: User) -> dict:
    return _user_info(user)
