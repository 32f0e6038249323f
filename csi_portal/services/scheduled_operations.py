"""
CSI Portal
Scheduled Operations — processes due survey blasts and reminders.

Runs as the ``scheduled_operations`` job of the SchedulerService, or on
demand through ``trigger_processing``. Due operations are handled one at a
time in ``next_execution_at`` order; a module-level guard keeps two cycles
from overlapping.

Status flow per run::

    Pending ──▶ Running ──▶ Pending (recurring, next time set)
                        ├─▶ Completed (once)
                        └─▶ Failed (error_message stored)
"""

from __future__ import annotations

import calendar
import logging
import threading
from datetime import datetime, timedelta
from typing import Any

from csi_portal.core.exceptions import ConflictError
from csi_portal.models import db
from csi_portal.models.scheduling import ScheduledOperation
from csi_portal.services.scheduler_service import SchedulerService, register_job
from csi_portal.utils.helpers import parse_time, utcnow

logger = logging.getLogger(__name__)

JOB_NAME = "scheduled_operations"

_guard = threading.Lock()
_state = {"is_running": False}


# ═══════════════════════════════════════════════════════════════════════════
#  Date arithmetic
# ═══════════════════════════════════════════════════════════════════════════

def _at_time(day: datetime, scheduled_time: str | None) -> datetime:
    t = parse_time(scheduled_time)
    if t is None:
        return day
    return day.replace(hour=t.hour, minute=t.minute, second=0, microsecond=0)


def _sunday_based_weekday(day: datetime) -> int:
    # Python: Monday=0 … Sunday=6; schedules use Sunday=0 … Saturday=6
    return (day.weekday() + 1) % 7


def _add_month(day: datetime) -> datetime:
    year = day.year + (1 if day.month == 12 else 0)
    month = 1 if day.month == 12 else day.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def first_execution(operation: ScheduledOperation) -> datetime:
    """First run: the scheduled date at the scheduled time."""
    return _at_time(operation.scheduled_date, operation.scheduled_time)


def calculate_next_execution(operation: ScheduledOperation, from_time: datetime | None = None):
    """Next run after *from_time* for recurring operations, None for "once"."""
    from_time = from_time or utcnow()
    frequency = operation.frequency

    if frequency == "daily":
        return _at_time(from_time + timedelta(days=1), operation.scheduled_time)

    if frequency == "weekly":
        if operation.day_of_week is None:
            return _at_time(from_time + timedelta(days=7), operation.scheduled_time)
        days = operation.day_of_week - _sunday_based_weekday(from_time)
        if days <= 0:
            days += 7
        return _at_time(from_time + timedelta(days=days), operation.scheduled_time)

    if frequency == "monthly":
        return _at_time(_add_month(from_time), operation.scheduled_time)

    if frequency != "once":
        logger.warning("Unknown frequency: %s", frequency)
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  Execution
# ═══════════════════════════════════════════════════════════════════════════

def _execute(operation: ScheduledOperation) -> dict:
    from csi_portal.services import email_service

    if operation.operation_type == "Blast":
        return email_service.send_survey_blast(
            operation.survey_id,
            criteria=operation.target_criteria or {},
            template=operation.email_template or "survey-invitation",
            embed_cover=operation.embed_cover,
        )
    if operation.operation_type == "Reminder":
        return email_service.send_reminders(
            operation.survey_id,
            template=operation.email_template or "survey-reminder",
        )
    raise ValueError(f"Unknown operation type: {operation.operation_type}")


def process_operation(operation: ScheduledOperation) -> dict:
    """Run one operation and persist its resulting status."""
    op_id = operation.id
    extra = {"operation_id": op_id, "survey_id": operation.survey_id}
    logger.info("Processing operation %s (%s)", op_id, operation.operation_type, extra=extra)

    now = utcnow()
    operation.status = "Running"
    operation.last_executed_at = now
    db.session.commit()

    try:
        result = _execute(operation)
    except Exception as exc:
        db.session.rollback()
        operation = db.session.get(ScheduledOperation, op_id)
        operation.status = "Failed"
        operation.error_message = str(exc)
        db.session.commit()
        logger.exception("Failed to process operation %s", op_id, extra=extra)
        return {"operation_id": op_id, "status": "Failed", "error": str(exc)}

    operation.execution_count = (operation.execution_count or 0) + 1
    operation.error_message = None
    next_at = calculate_next_execution(operation, now) if operation.is_recurring else None
    if next_at is not None:
        operation.status = "Pending"
        operation.next_execution_at = next_at
        logger.info("Operation %s completed. Next execution: %s", op_id, next_at, extra=extra)
    else:
        operation.status = "Completed"
        logger.info("Operation %s completed (one-time)", op_id, extra=extra)
    db.session.commit()

    return {
        "operation_id": op_id,
        "status": operation.status,
        "sent": (result or {}).get("sent", 0),
        "failed": (result or {}).get("failed", 0),
    }


def _run_cycle() -> dict[str, Any]:
    due = (
        ScheduledOperation.query
        .filter(
            ScheduledOperation.status == "Pending",
            ScheduledOperation.next_execution_at.isnot(None),
            ScheduledOperation.next_execution_at <= utcnow(),
        )
        .order_by(ScheduledOperation.next_execution_at)
        .all()
    )
    if not due:
        logger.debug("No pending operations to process")
        return {"processed": 0, "completed": 0, "failed": 0, "operations": []}

    logger.info("Processing %d scheduled operations", len(due))
    outcomes = [process_operation(op) for op in due]
    return {
        "processed": len(outcomes),
        "completed": sum(1 for o in outcomes if o["status"] != "Failed"),
        "failed": sum(1 for o in outcomes if o["status"] == "Failed"),
        "operations": outcomes,
    }


def _acquire() -> bool:
    with _guard:
        if _state["is_running"]:
            return False
        _state["is_running"] = True
        return True


def _release() -> None:
    with _guard:
        _state["is_running"] = False


def process_due_operations() -> dict[str, Any]:
    """One polling cycle. Skips (returns ``skipped``) if a cycle is running."""
    if not _acquire():
        logger.debug("Previous cycle still running, skipping")
        return {"skipped": True}
    try:
        return _run_cycle()
    finally:
        _release()


def trigger_processing() -> dict[str, Any]:
    """Manual run; raises ConflictError if a cycle is already in progress."""
    if not _acquire():
        raise ConflictError("Processing is already running")
    try:
        return _run_cycle()
    finally:
        _release()


def get_status() -> dict:
    return {
        "is_running": _state["is_running"],
        "is_scheduled": SchedulerService.is_scheduled(),
    }


@register_job(JOB_NAME)
def process_scheduled_operations(app) -> dict[str, Any]:
    """Send due survey blasts and reminders."""
    return process_due_operations()
