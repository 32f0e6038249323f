"""Shared parsing helpers used by services and blueprints.

parse_date / parse_datetime:  lenient parsers, None on bad input
require_datetime:             strict parser, raises ValidationError
parse_bool / parse_int:       query-string coercion
parse_id_list:                "1,2,3" or [1, 2, 3] → [1, 2, 3]
get_or_404:                   session.get() or NotFoundError
client_ip / user_agent:       request metadata for audit and sessions
"""
import logging
from datetime import date, datetime, time, timezone

from flask import has_request_context, request

from csi_portal.core.exceptions import NotFoundError, ValidationError
from csi_portal.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC 'now'. Timestamps are stored naive-UTC so SQLite and
    PostgreSQL compare them the same way."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    label = label or model.__name__
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(label, pk)
    return obj


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO date or datetime into a naive-UTC datetime.

    A bare date becomes midnight. Aware datetimes are converted to UTC.
    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except (ValueError, TypeError):
            d = parse_date(value)
            return datetime.combine(d, time.min) if d else None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def require_datetime(value, label: str) -> datetime:
    """Strict variant of parse_datetime: raises ``Invalid <label>``."""
    dt = parse_datetime(value)
    if dt is None:
        raise ValidationError(f"Invalid {label}")
    return dt


def parse_time(value):
    """Parse "HH:MM" (or "HH:MM:SS") into a time, None on bad input."""
    if not value:
        return None
    if isinstance(value, time):
        return value
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
        return time(hours, minutes, seconds)
    except ValueError:
        return None


def parse_bool(value, default=None):
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_id_list(value) -> list[int]:
    """Accept a list or a comma-separated string of ids; drop junk."""
    if value is None or value == "":
        return []
    items = value if isinstance(value, (list, tuple, set)) else str(value).split(",")
    ids = []
    for item in items:
        parsed = parse_int(str(item).strip()) if item is not None else None
        if parsed is not None and parsed not in ids:
            ids.append(parsed)
    return ids


def client_ip() -> str | None:
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def user_agent() -> str | None:
    if not has_request_context():
        return None
    return (request.headers.get("User-Agent") or "")[:500] or None


def isoformat(value):
    return value.isoformat() if value else None
