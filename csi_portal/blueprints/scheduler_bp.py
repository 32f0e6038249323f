"""
CSI Portal
Scheduler blueprint — status and manual run of the scheduled-operations processor.
"""

from flask import Blueprint

from csi_portal.middleware.permission_required import require_role
from csi_portal.models.auth import ROLE_ADMIN_EVENT
from csi_portal.services import scheduled_operations
from csi_portal.utils.errors import api_ok

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


@scheduler_bp.route("/status", methods=["GET"])
@require_role(ROLE_ADMIN_EVENT)
def status():
    return api_ok(scheduled_operations.get_status())


@scheduler_bp.route("/trigger", methods=["POST"])
@require_role(ROLE_ADMIN_EVENT)
def trigger():
    return api_ok(scheduled_operations.trigger_processing())
