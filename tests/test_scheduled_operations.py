"""
Scheduled operations tests: next-run arithmetic, processing cycle,
scheduler job registry and API.
"""

from datetime import datetime, timedelta

import pytest

from csi_portal.models import db
from csi_portal.models.auth import ROLE_DEPARTMENT_HEAD
from csi_portal.models.scheduling import EmailLog, ScheduledOperation
from csi_portal.services import scheduled_operations
from csi_portal.services.scheduled_operations import (
    calculate_next_execution,
    first_execution,
    process_due_operations,
)
from csi_portal.services.scheduler_service import SchedulerService, get_registered_jobs
from csi_portal.utils.helpers import utcnow

SUNDAY_8AM = datetime(2026, 10, 18, 8, 0)


def _op(**fields):
    defaults = {"frequency": "once", "scheduled_time": "09:30", "day_of_week": None,
                "scheduled_date": datetime(2026, 10, 20)}
    defaults.update(fields)
    return ScheduledOperation(**defaults)


class TestNextExecution:
    def test_first_execution_uses_scheduled_time(self):
        assert first_execution(_op()) == datetime(2026, 10, 20, 9, 30)

    def test_first_execution_without_time(self):
        assert first_execution(_op(scheduled_time=None)) == datetime(2026, 10, 20)

    def test_once_has_no_next(self):
        assert calculate_next_execution(_op(), SUNDAY_8AM) is None

    def test_daily(self):
        assert calculate_next_execution(_op(frequency="daily"), SUNDAY_8AM) == datetime(2026, 10, 19, 9, 30)

    @pytest.mark.parametrize("day_of_week, expected", [
        (1, datetime(2026, 10, 19, 9, 30)),   # Monday, next day
        (0, datetime(2026, 10, 25, 9, 30)),   # same weekday rolls a full week
        (6, datetime(2026, 10, 24, 9, 30)),   # Saturday
    ])
    def test_weekly(self, day_of_week, expected):
        op = _op(frequency="weekly", day_of_week=day_of_week)
        assert calculate_next_execution(op, SUNDAY_8AM) == expected

    def test_monthly_clamps_to_month_end(self):
        op = _op(frequency="monthly")
        assert calculate_next_execution(op, datetime(2026, 1, 31, 9, 30)) == datetime(2026, 2, 28, 9, 30)

    def test_monthly_rolls_year(self):
        op = _op(frequency="monthly")
        assert calculate_next_execution(op, datetime(2026, 12, 15)) == datetime(2027, 1, 15, 9, 30)


@pytest.fixture()
def due_blast(survey, make_user, org):
    make_user("ann", ROLE_DEPARTMENT_HEAD, department_id=org["department_id"])

    def _make(**fields):
        op = ScheduledOperation(
            survey_id=survey.id,
            operation_type=fields.pop("operation_type", "Blast"),
            frequency=fields.pop("frequency", "once"),
            scheduled_date=utcnow() - timedelta(hours=1),
            scheduled_time=fields.pop("scheduled_time", None),
            email_template="survey-invitation",
            target_criteria={"department_ids": [org["department_id"]]},
            status="Pending",
            next_execution_at=utcnow() - timedelta(minutes=5),
            **fields,
        )
        db.session.add(op)
        db.session.commit()
        return op

    return _make


class TestProcessing:
    def test_nothing_due(self):
        assert process_due_operations() == {"processed": 0, "completed": 0, "failed": 0, "operations": []}

    def test_one_time_blast_completes(self, due_blast):
        op = due_blast()
        result = process_due_operations()
        assert result["processed"] == 1
        assert result["operations"][0]["sent"] == 1

        db.session.refresh(op)
        assert op.status == "Completed"
        assert op.execution_count == 1
        assert op.last_executed_at is not None
        assert EmailLog.query.filter_by(email_type="Blast").count() == 1

    def test_recurring_blast_rescheduled(self, due_blast):
        op = due_blast(frequency="daily", scheduled_time="07:00")
        process_due_operations()
        db.session.refresh(op)
        assert op.status == "Pending"
        assert op.next_execution_at > utcnow()
        assert op.next_execution_at.strftime("%H:%M") == "07:00"

    def test_failure_recorded(self, due_blast, survey):
        op = due_blast()
        survey.status = "Closed"
        db.session.commit()

        result = process_due_operations()
        assert result["failed"] == 1
        db.session.refresh(op)
        assert op.status == "Failed"
        assert op.error_message == "Survey blasts can only be sent for active surveys"

    def test_future_and_cancelled_ignored(self, due_blast):
        future = due_blast()
        future.next_execution_at = utcnow() + timedelta(days=1)
        cancelled = due_blast()
        cancelled.status = "Cancelled"
        db.session.commit()
        assert process_due_operations()["processed"] == 0

    def test_overlapping_cycle_skipped(self, monkeypatch):
        monkeypatch.setitem(scheduled_operations._state, "is_running", True)
        assert process_due_operations() == {"skipped": True}


class TestSchedulerRegistry:
    def test_job_registered(self):
        assert scheduled_operations.JOB_NAME in get_registered_jobs()

    def test_unknown_job(self):
        result = SchedulerService.run_job("no-such-job")
        assert result["status"] == "error"


class TestSchedulerAPI:
    def test_status(self, client, admin_event):
        data = client.get("/api/v1/scheduler/status", headers=admin_event).get_json()["data"]
        assert data == {"is_running": False, "is_scheduled": False}

    def test_trigger(self, client, admin_event, due_blast):
        due_blast()
        res = client.post("/api/v1/scheduler/trigger", json={}, headers=admin_event)
        assert res.status_code == 200
        assert res.get_json()["data"]["processed"] == 1

    def test_trigger_while_running(self, client, admin_event, monkeypatch):
        monkeypatch.setitem(scheduled_operations._state, "is_running", True)
        res = client.post("/api/v1/scheduler/trigger", json={}, headers=admin_event)
        assert res.status_code == 409

    def test_it_lead_forbidden(self, client, it_lead):
        assert client.get("/api/v1/scheduler/status", headers=it_lead).status_code == 403

    def test_super_admin_lacks_role(self, client, super_admin):
        res = client.post("/api/v1/scheduler/trigger", json={}, headers=super_admin)
        assert res.status_code == 403
        assert res.get_json()["error"]["message"] == "Insufficient role"
