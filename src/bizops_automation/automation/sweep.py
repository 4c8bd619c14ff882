"""Periodic polling that synthesizes triggers the store cannot push.

Three ticks run on fixed cadences:

- overdue invoices (hourly): ``sent`` invoices past their due date become
  ``overdue`` and raise an ``invoice_overdue`` trigger
- approaching deadlines (every six hours): active projects and open tasks due
  within the lookahead window get a reminder unless one is already pending
- retention cleanup (daily): old terminal executions, logs and finished
  reminder rows are deleted

Each tick catches its own failures and returns a summary.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from ..core.config import SweepConfig
from ..core.logger import get_logger
from ..scheduler.scheduler import TaskScheduler
from .models import (
    DeliveryMethod,
    ExecutionStatus,
    Priority,
    ReminderConfig,
    ReminderKind,
    ReminderStatus,
    to_datetime,
)
from .repository import (
    EXECUTIONS,
    INVOICES,
    LOGS,
    PROJECTS,
    REMINDERS,
    TASKS,
    AutomationRepository,
)

if TYPE_CHECKING:
    from .engine import AutomationEngine

logger = get_logger("automation.sweep")

OVERDUE_JOB = "sweep.overdue_invoices"
DEADLINE_JOB = "sweep.approaching_deadlines"
CLEANUP_JOB = "sweep.cleanup"

OPEN_PAYMENT_STATUSES = {"pending", "partial"}
OPEN_TASK_STATUSES = ["todo", "in_progress"]


class PeriodicSweep:
    """Polling ticks bound to an engine."""

    def __init__(self, engine: AutomationEngine, config: SweepConfig | None = None):
        self.engine = engine
        self.config = config or SweepConfig()

    @property
    def repository(self) -> AutomationRepository:
        return self.engine.repository

    def register(self, scheduler: TaskScheduler) -> list[str]:
        """Add the three ticks as interval jobs."""
        return [
            scheduler.add_job(
                self.check_overdue_invoices,
                trigger="interval",
                job_id=OVERDUE_JOB,
                hours=self.config.overdue_interval_hours,
            ),
            scheduler.add_job(
                self.check_approaching_deadlines,
                trigger="interval",
                job_id=DEADLINE_JOB,
                hours=self.config.deadline_interval_hours,
            ),
            scheduler.add_job(
                self.cleanup,
                trigger="interval",
                job_id=CLEANUP_JOB,
                hours=self.config.cleanup_interval_hours,
            ),
        ]

    # ------------------------------------------------------------------
    # Overdue invoices
    # ------------------------------------------------------------------

    def check_overdue_invoices(self) -> dict[str, int]:
        summary = {"checked": 0, "marked_overdue": 0, "errors": 0}
        try:
            now = self.engine.now()
            invoices = self.repository.query(INVOICES, {"status": "sent"})
            for invoice in invoices:
                payment_status = invoice.get("payment_status") or "pending"
                if payment_status not in OPEN_PAYMENT_STATUSES:
                    continue
                summary["checked"] += 1
                due = to_datetime(invoice.get("due_date"))
                if due is None or due >= now:
                    continue
                try:
                    self.repository.update_row(
                        INVOICES,
                        invoice["id"],
                        {"status": "overdue", "updated_at": now.isoformat()},
                    )
                    self.engine.on_invoice_overdue(invoice["id"])
                    summary["marked_overdue"] += 1
                except Exception as exc:
                    summary["errors"] += 1
                    logger.error("Overdue handling failed for invoice %s: %s", invoice["id"], exc)
        except Exception as exc:
            summary["errors"] += 1
            logger.error("Overdue invoice sweep failed: %s", exc, exc_info=True)
        logger.info("Overdue invoice sweep: %s", summary)
        return summary

    # ------------------------------------------------------------------
    # Approaching deadlines
    # ------------------------------------------------------------------

    def _has_pending(self, kind: ReminderKind, entity_id: str) -> bool:
        return bool(self.repository.pending_schedules(kind, entity_id))

    def check_approaching_deadlines(self) -> dict[str, int]:
        summary = {"projects": 0, "tasks": 0, "skipped": 0, "errors": 0}
        try:
            now = self.engine.now()
            horizon = now + timedelta(days=self.config.lookahead_days)

            for project in self.repository.query(PROJECTS, {"status": "active"}):
                end_date = to_datetime(project.get("end_date"))
                if end_date is None or not now < end_date <= horizon:
                    continue
                if self._has_pending(ReminderKind.PROJECT_DEADLINE, project["id"]):
                    summary["skipped"] += 1
                    continue
                config = ReminderConfig(
                    days_before=self.config.deadline_days_before,
                    template=self.config.project_deadline_template,
                    method=DeliveryMethod.EMAIL,
                    priority=Priority.HIGH,
                )
                try:
                    created = self.engine.schedule_project_deadline_reminder(project["id"], config)
                    summary["projects" if created else "skipped"] += 1
                except Exception as exc:
                    summary["errors"] += 1
                    logger.error("Deadline reminder failed for project %s: %s", project["id"], exc)

            for task in self.repository.query(TASKS, {"status": OPEN_TASK_STATUSES}):
                due_date = to_datetime(task.get("due_date"))
                if due_date is None or not now < due_date <= horizon:
                    continue
                if self._has_pending(ReminderKind.TASK_DUE, task["id"]):
                    summary["skipped"] += 1
                    continue
                config = ReminderConfig(
                    days_before=self.config.deadline_days_before,
                    template=self.config.task_due_template,
                    method=DeliveryMethod.EMAIL,
                    priority=Priority.HIGH if task.get("priority") == "high" else Priority.MEDIUM,
                )
                try:
                    created = self.engine.schedule_task_due_reminder(task["id"], config)
                    summary["tasks" if created else "skipped"] += 1
                except Exception as exc:
                    summary["errors"] += 1
                    logger.error("Due reminder failed for task %s: %s", task["id"], exc)
        except Exception as exc:
            summary["errors"] += 1
            logger.error("Approaching deadline sweep failed: %s", exc, exc_info=True)
        logger.info("Approaching deadline sweep: %s", summary)
        return summary

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup(self) -> dict[str, int]:
        summary = {"executions": 0, "logs": 0, "reminders": 0, "errors": 0}
        try:
            cutoff = self.engine.now() - timedelta(days=self.config.retention_days)

            def older(row: dict[str, Any], *columns: str) -> bool:
                for column in columns:
                    value = to_datetime(row.get(column))
                    if value is not None:
                        return value < cutoff
                return False

            terminal = [ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value]
            executions = [
                row["id"]
                for row in self.repository.query(EXECUTIONS, {"status": terminal})
                if older(row, "completed_at", "started_at")
            ]
            summary["executions"] = self.repository.delete_rows(EXECUTIONS, executions)

            logs = [row["id"] for row in self.repository.query(LOGS) if older(row, "timestamp")]
            summary["logs"] = self.repository.delete_rows(LOGS, logs)

            finished = [
                ReminderStatus.SENT.value,
                ReminderStatus.FAILED.value,
                ReminderStatus.CANCELLED.value,
            ]
            reminders = [
                row["id"]
                for row in self.repository.query(REMINDERS, {"status": finished})
                if older(row, "last_attempt_at", "scheduled_at")
            ]
            summary["reminders"] = self.repository.delete_rows(REMINDERS, reminders)
        except Exception as exc:
            summary["errors"] += 1
            logger.error("Retention cleanup failed: %s", exc, exc_info=True)
        logger.info("Retention cleanup: %s", summary)
        return summary
