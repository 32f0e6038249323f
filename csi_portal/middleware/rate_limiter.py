"""
Rate limiting configuration.

Applies per-route-category limits using Flask-Limiter. The Limiter
instance is created in csi_portal/__init__.py with no default limits;
this module attaches the granular ones.

Usage:
    from csi_portal.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

LOGIN_LIMIT = "5/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "300/minute"
PUBLIC_SUBMIT_LIMIT = "20/minute"

_WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")

# Blueprints that carry the authenticated API
_API_BLUEPRINTS = (
    "users", "master_data", "mapping", "survey", "question",
    "response", "approval", "report", "email", "audit", "scheduler", "bulk_import",
)


def _is_write():
    return flask_request.method in _WRITE_METHODS


def _is_read():
    return flask_request.method not in _WRITE_METHODS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API routes.

    Limits (per remote IP):
        - Login:                    5/minute
        - Public response submit:   20/minute
        - Write endpoints:          60/minute  (POST/PUT/PATCH/DELETE)
        - Read endpoints:           300/minute (GET)
        - Health check:             exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    login_view = app.view_functions.get("auth.login")
    if login_view:
        app.view_functions["auth.login"] = limiter.limit(LOGIN_LIMIT)(login_view)

    submit_view = app.view_functions.get("response.submit_response")
    if submit_view:
        app.view_functions["response.submit_response"] = limiter.limit(PUBLIC_SUBMIT_LIMIT)(submit_view)

    for bp_name in _API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, exempt_when=_is_read)(bp)
            limiter.limit(READ_LIMIT, exempt_when=_is_write)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, submit: %s, write: %s, read: %s",
        LOGIN_LIMIT, PUBLIC_SUBMIT_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
