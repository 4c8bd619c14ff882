"""Tests for the periodic sweeps."""

from __future__ import annotations

from datetime import timedelta

import pytest

from bizops_automation.automation.models import (
    ExecutionStatus,
    ReminderConfig,
    ReminderKind,
    ReminderSchedule,
    ReminderStatus,
    WorkflowExecution,
)
from bizops_automation.automation.sweep import (
    CLEANUP_JOB,
    DEADLINE_JOB,
    OVERDUE_JOB,
)
from bizops_automation.core.config import SchedulerConfig
from bizops_automation.scheduler import TaskScheduler


class TestOverdueInvoices:
    """Tests for check_overdue_invoices()."""

    def test_marks_past_due_invoices(self, engine, store):
        """Test only sent invoices past their due date become overdue."""
        summary = engine.sweep.check_overdue_invoices()

        assert summary == {"checked": 2, "marked_overdue": 1, "errors": 0}
        assert store.query("invoices", {"id": "i1"})[0]["status"] == "overdue"
        assert store.query("invoices", {"id": "i2"})[0]["status"] == "sent"
        triggers = engine.repository.list_logs(action="invoice_overdue_trigger")
        assert [log.entity_id for log in triggers] == ["i1"]

    def test_second_run_is_idempotent(self, engine):
        """Test an invoice is marked overdue only once."""
        engine.sweep.check_overdue_invoices()

        assert engine.sweep.check_overdue_invoices()["marked_overdue"] == 0

    def test_paid_invoices_ignored(self, engine, store):
        """Test invoices with a closed payment status are skipped."""
        store.update("invoices", "i1", {"payment_status": "paid"})

        summary = engine.sweep.check_overdue_invoices()

        assert summary["checked"] == 1
        assert summary["marked_overdue"] == 0

    def test_errors_are_counted(self, engine, monkeypatch):
        """Test a failing invoice does not abort the sweep."""

        def explode(invoice_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "on_invoice_overdue", explode)

        summary = engine.sweep.check_overdue_invoices()

        assert summary["errors"] == 1
        assert summary["marked_overdue"] == 0


class TestApproachingDeadlines:
    """Tests for check_approaching_deadlines()."""

    def test_schedules_within_lookahead(self, engine, clock):
        """Test only deadlines inside the lookahead window get reminders."""
        summary = engine.sweep.check_approaching_deadlines()

        assert summary == {"projects": 1, "tasks": 0, "skipped": 0, "errors": 0}
        (schedule,) = engine.repository.pending_schedules(ReminderKind.PROJECT_DEADLINE, "p2")
        assert schedule.config.template == "project_deadline_approaching"
        assert schedule.scheduled_at.date() == (clock.now + timedelta(days=1)).date()
        assert engine.repository.pending_schedules(ReminderKind.PROJECT_DEADLINE, "p1") == []

    def test_no_duplicate_reminders(self, engine):
        """Test a second sweep skips entities with a pending reminder."""
        engine.sweep.check_approaching_deadlines()

        summary = engine.sweep.check_approaching_deadlines()

        assert summary["projects"] == 0
        assert summary["skipped"] == 1
        assert len(engine.repository.pending_schedules(ReminderKind.PROJECT_DEADLINE)) == 1

    def test_reminder_already_past_is_skipped(self, engine, store, clock):
        """Test a deadline whose reminder time has passed is not counted as scheduled."""
        store.update("projects", "p2", {"end_date": (clock.now + timedelta(days=1)).date().isoformat()})

        summary = engine.sweep.check_approaching_deadlines()

        assert summary == {"projects": 0, "tasks": 0, "skipped": 1, "errors": 0}
        assert engine.repository.pending_schedules(ReminderKind.PROJECT_DEADLINE) == []

    def test_open_task_in_window(self, engine, store):
        """Test open tasks due inside the window get a task reminder."""
        store.update("tasks", "t2", {"due_date": "2025-01-17"})

        summary = engine.sweep.check_approaching_deadlines()

        assert summary["tasks"] == 1
        assert len(engine.repository.pending_schedules(ReminderKind.TASK_DUE, "t2")) == 1

    def test_sweep_reminder_delivers_template(self, engine, timers, channels):
        """Test the reminder created by the sweep renders the seeded template."""
        engine.seed_defaults()
        engine.sweep.check_approaching_deadlines()

        timers.advance(days=1)

        (message,) = channels["email"].sent
        assert message["subject"] == "Project Deadline Reminder: Brand Refresh"
        assert message["recipient"] == "billing@acme.test"


class TestCleanup:
    """Tests for cleanup()."""

    def test_deletes_only_old_terminal_rows(self, engine, clock):
        """Test retention removes old finished rows and keeps the rest."""
        repository = engine.repository
        old = clock.now - timedelta(days=40)
        recent = clock.now - timedelta(days=1)

        for execution_id, started in (("old", old), ("new", recent)):
            repository.insert_execution(
                WorkflowExecution(
                    id=execution_id,
                    rule_id="r1",
                    trigger_type="task_completed",
                    status=ExecutionStatus.COMPLETED,
                    started_at=started,
                    completed_at=started,
                )
            )
        repository.write_log("trigger", None, "old_entry", "success", timestamp=old)
        repository.write_log("trigger", None, "new_entry", "success", timestamp=recent)
        for schedule_id, status in (("sent", ReminderStatus.SENT), ("waiting", ReminderStatus.PENDING)):
            repository.insert_schedule(
                ReminderSchedule(
                    id=schedule_id,
                    kind=ReminderKind.INVOICE_PAYMENT,
                    entity_id="i1",
                    scheduled_at=old,
                    config=ReminderConfig(days_before=1),
                    status=status,
                    created_at=old,
                )
            )

        summary = engine.sweep.cleanup()

        assert summary == {"executions": 1, "logs": 1, "reminders": 1, "errors": 0}
        assert [e.id for e in repository.list_executions()] == ["new"]
        assert [log.action for log in repository.list_logs()] == ["new_entry"]
        assert [s.id for s in repository.list_schedules()] == ["waiting"]


class TestRegister:
    """Tests for registering the sweep jobs."""

    def test_adds_three_interval_jobs(self, engine):
        """Test the three ticks are added to the scheduler."""
        scheduler = TaskScheduler(SchedulerConfig())

        job_ids = engine.sweep.register(scheduler)

        assert job_ids == [OVERDUE_JOB, DEADLINE_JOB, CLEANUP_JOB]
        assert {job.id for job in scheduler.get_jobs()} == set(job_ids)

    @pytest.mark.parametrize("hours", [0.5, 12.0])
    def test_interval_from_config(self, engine, hours):
        """Test the cadence comes from the sweep config."""
        engine.sweep.config = engine.sweep.config.model_copy(update={"overdue_interval_hours": hours})
        scheduler = TaskScheduler(SchedulerConfig())

        engine.sweep.register(scheduler)

        trigger = scheduler.get_job(OVERDUE_JOB).trigger
        assert trigger.interval == timedelta(hours=hours)
