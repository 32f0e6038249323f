"""
Central error handlers.

One place maps the exception taxonomy, werkzeug HTTP errors and database
failures onto the ``{success: false, error: {...}}`` envelope.

Usage:
    from csi_portal.core.error_handlers import register_error_handlers
    register_error_handlers(app)
"""

import logging

from flask import current_app, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from csi_portal.core.exceptions import CSIPortalError
from csi_portal.models import db
from csi_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: E.VALIDATION,
    401: E.AUTHENTICATION,
    403: E.FORBIDDEN,
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    409: E.CONFLICT,
    413: E.PAYLOAD_TOO_LARGE,
    415: E.UNSUPPORTED_MEDIA_TYPE,
    429: E.RATE_LIMITED,
}


def register_error_handlers(app):
    """Attach the handlers to *app*."""

    @app.errorhandler(CSIPortalError)
    def _handle_portal_error(error: CSIPortalError):
        if error.status_code >= 500:
            logger.error("%s on %s %s: %s", type(error).__name__,
                         request.method, request.path, error.message)
            db.session.rollback()
        else:
            logger.info("%s on %s %s: %s", type(error).__name__,
                        request.method, request.path, error.message)
        return api_error(error.code, error.message,
                         status=error.status_code, details=error.details or None)

    @app.errorhandler(HTTPException)
    def _handle_http_error(error: HTTPException):
        code = _HTTP_CODES.get(error.code, E.INTERNAL)
        message = error.description or error.name
        if error.code == 429:
            message = f"Too many requests: {error.description}"
        return api_error(code, message, status=error.code)

    @app.errorhandler(IntegrityError)
    def _handle_integrity_error(error: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error on %s %s: %s", request.method, request.path, error.orig)
        return api_error(E.CONFLICT, "Duplicate or constraint violation", status=409)

    @app.errorhandler(SQLAlchemyError)
    def _handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return api_error(E.DATABASE, "Database error", status=500)

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        message = "Internal server error"
        if current_app.config.get("DEBUG"):
            message = f"{message}: {error}"
        return api_error(E.INTERNAL, message, status=500)
