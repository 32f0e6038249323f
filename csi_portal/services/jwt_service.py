"""
JWT Service — token generation, verification, and session persistence.

Access token:  8 hours  (configurable via JWT_ACCESS_EXPIRES)
Refresh token: 7 days   (configurable via JWT_REFRESH_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": "<user_id>",
    "username": "...",
    "role": "AdminEvent",
    "type": "access" | "refresh",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Sessions store only SHA-256 hashes of the tokens. ``expires_at`` slides
forward on activity (SESSION_TIMEOUT_MINUTES) but never past
``max_expires_at`` (SESSION_MAX_DURATION_HOURS after login).
"""

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from csi_portal.core.exceptions import DatabaseError
from csi_portal.models import db
from csi_portal.models.auth import Session, User
from csi_portal.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 8 * 3600
DEFAULT_REFRESH_EXPIRES = 7 * 24 * 3600
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _get_refresh_expires():
    return current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def _encode(user: User, token_type: str, lifetime_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime_seconds),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_token_pair(user: User) -> dict:
    """Generate access + refresh tokens for *user*."""
    access_token = _encode(user, "access", _get_access_expires())
    refresh_token = _encode(user, "refresh", _get_refresh_expires())
    return {
        "token": access_token,
        "refresh_token": refresh_token,
        "token_type": "Bearer",
        "expires_in": _get_access_expires(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])

    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")

    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")


def hash_token(token: str) -> str:
    """SHA-256 hash of a token for DB storage; raw tokens are never stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Session Management
# ═══════════════════════════════════════════════════════════════
def _session_timeout() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_TIMEOUT_MINUTES", 30))


def _session_max_duration() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_MAX_DURATION_HOURS", 8))


def create_session(
    user: User,
    tokens: dict,
    ip_address: str | None,
    user_agent: str | None,
) -> Session:
    """
    Invalidate the user's open sessions and persist a fresh one.

    One active session per user: logging in elsewhere signs out the
    previous browser.
    """
    now = utcnow()
    for old in Session.query.filter_by(user_id=user.id, is_active=True):
        old.invalidate()

    session = Session(
        user_id=user.id,
        token_hash=hash_token(tokens["token"]),
        refresh_token_hash=hash_token(tokens["refresh_token"]),
        ip_address=ip_address or "unknown",
        user_agent=(user_agent or "unknown")[:500],
        last_activity=now,
        expires_at=now + _session_timeout(),
        max_expires_at=now + _session_max_duration(),
        is_active=True,
    )
    db.session.add(session)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Could not persist session for user %s", user.id)
        raise DatabaseError("Could not create session") from exc
    return session


def get_session_by_token(token: str) -> Session | None:
    return Session.query.filter_by(token_hash=hash_token(token)).first()


def get_session_by_refresh_token(refresh_token: str) -> Session | None:
    return Session.query.filter_by(refresh_token_hash=hash_token(refresh_token)).first()


def touch_session(session: Session) -> None:
    """Slide ``expires_at`` forward, capped by ``max_expires_at``."""
    now = utcnow()
    session.last_activity = now
    session.expires_at = min(now + _session_timeout(), session.max_expires_at)
    db.session.commit()


def revoke_session(session: Session) -> None:
    session.invalidate()
    db.session.commit()


def rotate_session_tokens(session: Session, tokens: dict) -> Session:
    """Swap both token hashes on an existing session (refresh flow)."""
    session.token_hash = hash_token(tokens["token"])
    session.refresh_token_hash = hash_token(tokens["refresh_token"])
    now = utcnow()
    session.last_activity = now
    session.expires_at = min(now + _session_timeout(), session.max_expires_at)
    db.session.commit()
    return session


def revoke_all_user_sessions(user_id: int) -> None:
    for session in Session.query.filter_by(user_id=user_id, is_active=True):
        session.invalidate()
    db.session.commit()
