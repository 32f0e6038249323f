"""
Portal-wide exception hierarchy.

Services raise these types; the central handlers registered in
``csi_portal.core.error_handlers`` turn them into JSON envelopes with a
consistent HTTP status code. Blueprints never catch them.

Usage:
    from csi_portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Survey", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class CSIPortalError(Exception):
    """Base class for every expected, client-facing error.

    Subclasses set ``status_code`` and ``code``; ``details`` carries an
    optional structured payload for the response body.
    """

    status_code = 500
    code = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(CSIPortalError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Survey", "Question").
        resource_id: The key that was looked up. Included in logs and message.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(CSIPortalError):
    """Raised when input fails validation or a business rule.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    status_code = 400
    code = "ERR_VALIDATION"


class ConflictError(CSIPortalError):
    """Raised when an operation collides with existing state (duplicates,
    illegal state transitions, dependent rows).

    Maps to HTTP 409. Either pass a full message, or ``resource``/``field``/
    ``value`` to get the standard duplicate wording.
    """

    status_code = 409
    code = "ERR_CONFLICT"

    def __init__(
        self,
        message: str | None = None,
        *,
        resource: str | None = None,
        field: str | None = None,
        value: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if message is None:
            message = f"{resource} with {field}={value!r} already exists"
        super().__init__(message)


class AuthenticationError(CSIPortalError):
    """Missing, invalid or expired credentials. Maps to HTTP 401."""

    status_code = 401
    code = "ERR_AUTHENTICATION"


class AuthorizationError(CSIPortalError):
    """Authenticated user lacks the role/permission/scope. Maps to HTTP 403."""

    status_code = 403
    code = "ERR_FORBIDDEN"


class DatabaseError(CSIPortalError):
    """A persistence failure the caller cannot fix. Maps to HTTP 500."""

    status_code = 500
    code = "ERR_DATABASE"


class ExternalServiceError(CSIPortalError):
    """SMTP or another downstream dependency failed. Maps to HTTP 502."""

    status_code = 502
    code = "ERR_EXTERNAL_SERVICE"
