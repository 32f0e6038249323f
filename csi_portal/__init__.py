"""
CSI Portal
Flask Application Factory.

Usage:
    from csi_portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from csi_portal.config import config
from csi_portal.core.error_handlers import register_error_handlers
from csi_portal.middleware.audit_logger import init_audit_logger
from csi_portal.middleware.csrf import init_csrf
from csi_portal.middleware.jwt_auth import init_jwt_middleware
from csi_portal.middleware.logging_config import configure_logging
from csi_portal.middleware.rate_limiter import init_rate_limits
from csi_portal.middleware.security_headers import init_security_headers
from csi_portal.middleware.timing import init_request_timing
from csi_portal.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

# Multipart uploads go to these paths; everything else must be JSON
_UPLOAD_SUFFIXES = (
    "/upload/image", "/upload/hero", "/upload/logo", "/upload/background", "/bulk-import",
)
_UPLOAD_PREFIXES = ("/api/v1/bulk-import/",)


def _register_request_guards(app):
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.path.endswith(_UPLOAD_SUFFIXES) or request.path.startswith(_UPLOAD_PREFIXES):
                return None
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None


def _register_cli(app):
    @app.cli.command("seed-admin")
    @click.option("--username", default="admin", show_default=True)
    @click.option("--password", envvar="ADMIN_PASSWORD", required=True)
    @click.option("--email", default=None)
    def seed_admin_cmd(username, password, email):
        """Create the first SuperAdmin account."""
        from csi_portal.models.auth import ROLE_SUPER_ADMIN
        from csi_portal.services import user_service

        user = user_service.create_user({
            "username": username,
            "display_name": "Administrator",
            "email": email,
            "role": ROLE_SUPER_ADMIN,
            "password": password,
        })
        logger.info("SuperAdmin %s created (id=%s)", user.username, user.id)

    @app.cli.command("process-scheduled")
    def process_scheduled_cmd():
        """Run one scheduled-operations cycle now."""
        from csi_portal.services import scheduled_operations

        summary = scheduled_operations.trigger_processing()
        logger.info("Scheduled operations processed: %s", summary)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware (order matters: JWT sets g.current_user for CSRF/audit) ─
    init_request_timing(app)
    init_security_headers(app)
    _register_request_guards(app)
    init_jwt_middleware(app)
    init_csrf(app)
    init_audit_logger(app)
    register_error_handlers(app)

    # ── Models (register tables on the metadata) ─────────────────────────
    from csi_portal.models import audit as _audit_models          # noqa: F401
    from csi_portal.models import auth as _auth_models            # noqa: F401
    from csi_portal.models import org as _org_models              # noqa: F401
    from csi_portal.models import response as _response_models    # noqa: F401
    from csi_portal.models import scheduling as _scheduling_models  # noqa: F401
    from csi_portal.models import survey as _survey_models        # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from csi_portal.blueprints import register_blueprints
    register_blueprints(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as exc:
            app.logger.warning("db.create_all() failed: %s", exc)

    _register_cli(app)

    # ── Scheduler (import jobs to register them) ─────────────────────────
    importlib.import_module("csi_portal.services.scheduled_operations")
    from csi_portal.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        SchedulerService.start()

    return app
