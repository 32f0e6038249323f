"""
CSRF protection — server-side, single-use tokens validated from a header.

Flow:
    1. The SPA calls ``GET /api/v1/auth/csrf-token`` (authenticated) and
       receives a token in the body and the ``X-CSRF-Token`` header.
    2. Each state-changing request (POST/PUT/PATCH/DELETE under /api/v1)
       sends it back in ``X-CSRF-Token``. The token is consumed on use.

The store lives in process memory: token → {user_id, ip, expires_at}.
Requests without an authenticated user (login, refresh, public survey
submission) are not checked; they carry no session to forge.
"""

import logging
import secrets
import threading
import time

from flask import current_app, g, request

from csi_portal.utils.errors import E, api_error
from csi_portal.utils.helpers import client_ip

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_EXEMPT_PREFIXES = ("/api/v1/auth/login", "/api/v1/auth/refresh")

_store: dict[str, dict] = {}
_lock = threading.Lock()


def _ttl() -> int:
    return int(current_app.config.get("CSRF_TOKEN_TTL", 3600))


def _purge_expired(now: float) -> None:
    expired = [t for t, entry in _store.items() if entry["expires_at"] < now]
    for token in expired:
        del _store[token]


def issue_csrf_token(user_id: int | None) -> str:
    """Create and remember a fresh token for *user_id*."""
    token = secrets.token_hex(32)
    now = time.time()
    with _lock:
        _purge_expired(now)
        _store[token] = {
            "user_id": user_id,
            "ip": client_ip(),
            "expires_at": now + _ttl(),
        }
    return token


def consume_csrf_token(token: str | None, user_id: int | None) -> str | None:
    """Validate and delete *token*. Returns an error message or None."""
    if not token:
        return "CSRF token missing"
    now = time.time()
    with _lock:
        entry = _store.pop(token, None)
    if entry is None:
        return "Invalid CSRF token"
    if entry["expires_at"] < now:
        return "CSRF token expired"
    if entry["user_id"] != user_id:
        return "Invalid CSRF token"
    ip = client_ip()
    if entry["ip"] and ip and entry["ip"] != ip:
        logger.warning("CSRF token used from a different IP (issued %s, used %s)", entry["ip"], ip)
    return None


def clear_csrf_tokens() -> None:
    with _lock:
        _store.clear()


def init_csrf(app):
    """Register the CSRF check. Must run after the JWT middleware."""

    @app.before_request
    def _check_csrf():
        if not current_app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in _SAFE_METHODS:
            return None
        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(_EXEMPT_PREFIXES):
            return None
        user = getattr(g, "current_user", None)
        if user is None:
            return None

        error = consume_csrf_token(request.headers.get(CSRF_HEADER), user.id)
        if error:
            logger.warning("CSRF check failed for %s %s: %s", request.method, path, error)
            return api_error(E.CSRF, error, status=403)
        return None
