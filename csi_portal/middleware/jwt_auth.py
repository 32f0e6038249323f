"""
JWT Auth Middleware — Parses the Bearer token and resolves ``g.current_user``.

Runs as a before_request hook for every ``/api/v1/`` path. A missing or
invalid token never blocks the request here; it leaves ``g.current_user``
as None and records the reason in ``g.auth_error`` so the permission
decorators can answer 401 with a meaningful message. Public endpoints
(login, refresh, health, public survey submission) simply don't use the
decorators.
"""

import logging

from flask import g, request

from csi_portal.core.exceptions import AuthenticationError
from csi_portal.services import auth_service

logger = logging.getLogger(__name__)

# Paths that skip token parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.token = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(JWT_SKIP_PREFIXES):
            return

        token = bearer_token()
        if token is None:
            return

        try:
            g.current_user = auth_service.validate_token(token)
            g.token = token
        except AuthenticationError as exc:
            g.auth_error = exc.message
            logger.debug("Token rejected on %s: %s", path, exc.message)
