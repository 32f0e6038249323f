"""Liveness endpoint with a database ping."""

import logging

from flask import Blueprint
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from csi_portal.models import db
from csi_portal.utils.errors import E, api_error, api_ok
from csi_portal.utils.helpers import isoformat, utcnow

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        return api_error(E.DATABASE, "Database unavailable", status=503)
    return api_ok({"status": "ok", "database": "ok", "timestamp": isoformat(utcnow())})
