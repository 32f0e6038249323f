"""Standardised API response envelopes.

Every JSON endpoint answers with one of two shapes::

    {"success": true,  "data": ...}
    {"success": false, "error": {"code": "ERR_...", "message": "...", "details": {...}}}

Usage
-----
    from csi_portal.utils.errors import api_ok, api_error, E

    return api_ok(survey.to_dict(), status=201)
    return api_error(E.VALIDATION_REQUIRED, "survey_id is required")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION = "ERR_VALIDATION"
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    AUTHENTICATION = "ERR_AUTHENTICATION"
    FORBIDDEN = "ERR_FORBIDDEN"
    CSRF = "ERR_CSRF"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT = "ERR_CONFLICT"

    # Request shape – HTTP 405 / 413 / 415 / 429
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500 / 502
    DATABASE = "ERR_DATABASE"
    EXTERNAL_SERVICE = "ERR_EXTERNAL_SERVICE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION: 400,
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.AUTHENTICATION: 401,
    E.FORBIDDEN: 403,
    E.CSRF: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.EXTERNAL_SERVICE: 502,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, bulk failures, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    error: dict = {"code": code, "message": message}
    if details:
        error["details"] = details

    return jsonify({"success": False, "error": error}), http_status


def api_ok(data=None, *, status: int = 200, **meta):
    """Return a standard JSON success response.

    Extra keyword arguments (``total``, ``page`` …) are placed next to
    ``data`` in the envelope.
    """
    body: dict = {"success": True, "data": data}
    body.update(meta)
    return jsonify(body), status
