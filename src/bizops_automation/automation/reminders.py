"""Reminder scheduling, delivery and recovery.

A reminder is a persisted :class:`ReminderSchedule` row plus, while the row is
pending and its ``scheduled_at`` lies in the future, one armed timer keyed by
the schedule id. Every mutation below keeps those two in step.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from ..core.config import ReminderSettings
from ..core.exceptions import EntityNotFoundError, ReminderError, StoreError
from ..core.logger import get_logger
from ..core.store import new_id
from ..scheduler.timers import TimerBackend
from .actions import ActionDispatcher
from .models import (
    Clock,
    Priority,
    ReminderConfig,
    ReminderKind,
    ReminderSchedule,
    ReminderStatus,
    SendNotificationAction,
    SendNotificationParams,
    TriggerType,
    to_datetime,
    utc_now,
)
from .repository import CLIENTS, INVOICES, PROJECTS, TASKS, AutomationRepository
from .tracker import REMINDER_SENT

logger = get_logger("automation.reminders")

TriggerCallback = Callable[[TriggerType, str, dict[str, Any]], Any]

REMINDER_TRIGGERS: dict[ReminderKind, TriggerType] = {
    ReminderKind.PROJECT_DEADLINE: TriggerType.PROJECT_DEADLINE,
    ReminderKind.INVOICE_PAYMENT: TriggerType.INVOICE_DUE,
    ReminderKind.TASK_DUE: TriggerType.TASK_DUE,
    ReminderKind.CLIENT_FOLLOWUP: TriggerType.CLIENT_FOLLOWUP,
}

# Used when a reminder config names no template
FALLBACK_MESSAGES: dict[ReminderKind, tuple[str, str]] = {
    ReminderKind.PROJECT_DEADLINE: (
        "Project Deadline Reminder: {{project_name}}",
        'The project "{{project_name}}" is due on {{deadline}} '
        "({{days_remaining}} days remaining).",
    ),
    ReminderKind.INVOICE_PAYMENT: (
        "Payment Reminder: Invoice {{invoice_number}}",
        "Invoice {{invoice_number}} for {{amount}} was due on {{due_date}}.",
    ),
    ReminderKind.TASK_DUE: (
        "Task Due: {{task_title}}",
        'Task "{{task_title}}" ({{priority}} priority) is due on {{due_date}}.',
    ),
    ReminderKind.CLIENT_FOLLOWUP: (
        "Following up on {{project_name}}",
        "Hello {{client_name}}, we reached the {{milestone_type}} milestone "
        "on {{project_name}}.",
    ),
}


# ---------------------------------------------------------------------------
# Date arithmetic
# ---------------------------------------------------------------------------


def calculate_reminder_dates(
    target: datetime, config: ReminderConfig
) -> list[tuple[datetime, ReminderConfig]]:
    """Candidate firing times with the config snapshot each one carries.

    Escalation candidates snapshot the config with that escalation's template,
    method and priority. No filtering on the current time happens here.
    """
    candidates: list[tuple[datetime, ReminderConfig]] = []
    if config.days_before is not None:
        candidates.append((target - timedelta(days=config.days_before), config))
    if config.days_after is not None:
        candidates.append((target + timedelta(days=config.days_after), config))
    for rule in config.escalation_rules:
        snapshot = config.model_copy(
            update={
                "template": rule.template or config.template,
                "method": rule.method,
                "priority": rule.priority,
            }
        )
        candidates.append((target + timedelta(days=rule.days_offset), snapshot))
    return candidates


def adjust_config_for_priority(config: ReminderConfig, priority: str | None) -> ReminderConfig:
    """High priority tasks are reminded a day earlier, low priority a day later."""
    update: dict[str, Any] = {}
    if priority == Priority.HIGH.value:
        if config.days_before:
            update["days_before"] = max(1, config.days_before - 1)
        update["priority"] = Priority.HIGH
    elif priority == Priority.LOW.value:
        if config.days_before:
            update["days_before"] = config.days_before + 1
        update["priority"] = Priority.LOW
    elif priority == Priority.MEDIUM.value:
        update["priority"] = Priority.MEDIUM
    return config.model_copy(update=update)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded up."""
    return math.ceil((end - start).total_seconds() / 86400)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class ReminderNotifier:
    """Loads the entity behind a reminder and sends its notification."""

    def __init__(
        self,
        repository: AutomationRepository,
        dispatcher: ActionDispatcher,
        settings: ReminderSettings | None = None,
        clock: Clock | None = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.settings = settings or ReminderSettings()
        self.clock = clock or utc_now

    def _require(self, collection: str, row_id: str | None) -> dict[str, Any]:
        row = self.repository.get_row(collection, row_id)
        if row is None:
            raise EntityNotFoundError(collection, str(row_id))
        return row

    def _days_remaining(self, value: Any) -> int | None:
        target = to_datetime(value)
        return days_between(self.clock(), target) if target else None

    def _days_overdue(self, value: Any) -> int | None:
        target = to_datetime(value)
        return max(0, days_between(target, self.clock())) if target else None

    def build(self, kind: ReminderKind, entity_id: str) -> tuple[str | None, dict[str, Any]]:
        """Return ``(recipient, variables)`` for a reminder."""
        if kind is ReminderKind.PROJECT_DEADLINE:
            project = self._require(PROJECTS, entity_id)
            client = self.repository.get_row(CLIENTS, project.get("client_id")) or {}
            return client.get("email"), {
                "project_id": project["id"],
                "project_name": project.get("name", ""),
                "client_id": project.get("client_id"),
                "client_name": client.get("name", ""),
                "deadline": project.get("end_date"),
                "days_remaining": self._days_remaining(project.get("end_date")),
            }

        if kind is ReminderKind.INVOICE_PAYMENT:
            invoice = self._require(INVOICES, entity_id)
            client = self.repository.get_row(CLIENTS, invoice.get("client_id")) or {}
            return client.get("email"), {
                "invoice_id": invoice["id"],
                "invoice_number": invoice.get("invoice_number", ""),
                "client_id": invoice.get("client_id"),
                "client_name": client.get("name", ""),
                "amount": invoice.get("total_amount"),
                "due_date": invoice.get("due_date"),
                "days_overdue": self._days_overdue(invoice.get("due_date")),
            }

        if kind is ReminderKind.TASK_DUE:
            task = self._require(TASKS, entity_id)
            project = self.repository.get_row(PROJECTS, task.get("project_id")) or {}
            client = self.repository.get_row(CLIENTS, project.get("client_id")) or {}
            return self.settings.admin_recipient, {
                "task_id": task["id"],
                "task_title": task.get("title", ""),
                "project_id": task.get("project_id"),
                "project_name": project.get("name", ""),
                "client_name": client.get("name", ""),
                "due_date": task.get("due_date"),
                "priority": task.get("priority", "medium"),
                "days_remaining": self._days_remaining(task.get("due_date")),
            }

        client_id, _, rest = entity_id.partition(":")
        project_id, _, milestone_type = rest.partition(":")
        client = self._require(CLIENTS, client_id)
        project = self._require(PROJECTS, project_id)
        return client.get("email"), {
            "client_id": client_id,
            "project_id": project_id,
            "client_name": client.get("name", ""),
            "project_name": project.get("name", ""),
            "milestone_type": milestone_type,
            "project_status": project.get("status"),
            "completion_percentage": project.get("progress_percentage") or 0,
        }

    def deliver(self, schedule: ReminderSchedule, variables: Mapping[str, Any], recipient: str | None) -> dict[str, Any]:
        """Send the reminder notification.

        Raises:
            ReminderError: When there is no recipient or delivery fails.
        """
        if not recipient:
            raise ReminderError(f"No recipient for {schedule.kind.value} reminder {schedule.id}")

        config = schedule.config
        subject, body = FALLBACK_MESSAGES[schedule.kind]
        params = SendNotificationParams(
            channel=config.method.value,
            recipient=recipient,
            template_id=config.template,
            subject=None if config.template else subject,
            body=None if config.template else body,
            variables={"priority": config.priority.value, "notification_type": "reminder"},
        )
        result = self.dispatcher.execute(SendNotificationAction(parameters=params), variables)
        if not result.success:
            raise ReminderError(result.error or "notification failed")
        return result.data or {}


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class ReminderScheduler:
    """Persists reminder schedules and keeps their timers armed."""

    def __init__(
        self,
        repository: AutomationRepository,
        timers: TimerBackend,
        notifier: ReminderNotifier,
        settings: ReminderSettings | None = None,
        clock: Clock | None = None,
        on_fired: TriggerCallback | None = None,
    ):
        self.repository = repository
        self.timers = timers
        self.notifier = notifier
        self.settings = settings or ReminderSettings()
        self.clock = clock or utc_now
        self.on_fired = on_fired
        self._lock = threading.RLock()
        self._live: set[str] = set()

    # ------------------------------------------------------------------
    # Timer bookkeeping
    # ------------------------------------------------------------------

    def _arm(self, schedule: ReminderSchedule) -> None:
        with self._lock:
            if schedule.id in self._live:
                return
            self._live.add(schedule.id)
            self.timers.arm(schedule.id, schedule.scheduled_at, lambda: self._fire(schedule.id))

    def _disarm(self, schedule_id: str) -> None:
        with self._lock:
            if schedule_id in self._live:
                self._live.discard(schedule_id)
                self.timers.disarm(schedule_id)

    def live_timers(self) -> set[str]:
        with self._lock:
            return set(self._live)

    def _log(self, action: str, entity_id: str | None, status: str, **details: Any) -> None:
        try:
            self.repository.write_log(
                "reminder", entity_id, action, status, details, timestamp=self.clock()
            )
        except StoreError as exc:
            logger.error("Failed to write reminder log: %s", exc)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def schedule_reminder(
        self,
        kind: ReminderKind,
        entity_id: str,
        target_date: datetime | str,
        config: ReminderConfig,
    ) -> list[ReminderSchedule]:
        """Persist and arm every future candidate for ``target_date``."""
        target = to_datetime(target_date)
        if target is None:
            raise ReminderError(f"Invalid target date for {kind.value} {entity_id}: {target_date!r}")

        now = self.clock()
        created: list[ReminderSchedule] = []
        for run_at, snapshot in calculate_reminder_dates(target, config):
            if run_at <= now:
                continue
            schedule = ReminderSchedule(
                id=new_id(),
                kind=kind,
                entity_id=entity_id,
                scheduled_at=run_at,
                config=snapshot,
                created_at=now,
            )
            self.repository.insert_schedule(schedule)
            self._arm(schedule)
            created.append(schedule)

        self._log(
            f"{kind.value}_reminder_scheduled",
            entity_id,
            "success",
            reminder_dates=[s.scheduled_at.isoformat() for s in created],
        )
        logger.info("Scheduled %d %s reminder(s) for %s", len(created), kind.value, entity_id)
        return created

    def schedule_now(
        self, kind: ReminderKind, entity_id: str, config: ReminderConfig
    ) -> ReminderSchedule:
        """Persist a reminder due now and fire it synchronously."""
        now = self.clock()
        schedule = ReminderSchedule(
            id=new_id(),
            kind=kind,
            entity_id=entity_id,
            scheduled_at=now,
            config=config,
            created_at=now,
        )
        self.repository.insert_schedule(schedule)
        self._fire(schedule.id)
        return self.repository.get_schedule(schedule.id) or schedule

    def cancel_pending(self, kind: ReminderKind, entity_id: str) -> int:
        """Cancel every pending reminder of ``kind`` for ``entity_id``."""
        count = 0
        with self._lock:
            for schedule in self.repository.pending_schedules(kind, entity_id):
                self.repository.update_schedule(schedule.id, status=ReminderStatus.CANCELLED)
                self._disarm(schedule.id)
                count += 1
        if count:
            self._log("reminders_cancelled", entity_id, "success", kind=kind.value, count=count)
            logger.info("Cancelled %d %s reminder(s) for %s", count, kind.value, entity_id)
        return count

    def recover(self) -> dict[str, int]:
        """Re-arm pending reminders after a restart.

        Past-due rows are left pending under the ``skip`` policy and fired once
        under ``fire``.
        """
        now = self.clock()
        summary = {"rearmed": 0, "stale": 0, "fired": 0}
        for schedule in self.repository.pending_schedules():
            if schedule.scheduled_at > now:
                self._arm(schedule)
                summary["rearmed"] += 1
            elif self.settings.recovery_policy == "fire":
                self._fire(schedule.id)
                summary["fired"] += 1
            else:
                logger.warning(
                    "Reminder %s (%s %s) was due at %s and is left pending",
                    schedule.id,
                    schedule.kind.value,
                    schedule.entity_id,
                    schedule.scheduled_at.isoformat(),
                )
                summary["stale"] += 1
        logger.info("Reminder recovery: %s", summary)
        return summary

    def stale_pending(self) -> list[ReminderSchedule]:
        """Pending reminders whose time has passed without a live timer."""
        now = self.clock()
        live = self.live_timers()
        return [
            schedule
            for schedule in self.repository.pending_schedules()
            if schedule.scheduled_at <= now and schedule.id not in live
        ]

    def disarm_all(self) -> None:
        with self._lock:
            for schedule_id in list(self._live):
                self._disarm(schedule_id)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def _fire(self, schedule_id: str) -> None:
        """Timer callback; never raises."""
        with self._lock:
            self._live.discard(schedule_id)
        try:
            self._run(schedule_id)
        except Exception as exc:
            logger.error("Reminder %s firing failed: %s", schedule_id, exc, exc_info=True)

    def _run(self, schedule_id: str) -> None:
        schedule = self.repository.get_schedule(schedule_id)
        if schedule is None or schedule.status is not ReminderStatus.PENDING:
            logger.debug("Reminder %s is no longer pending", schedule_id)
            return

        variables: dict[str, Any] = {}
        error: str | None = None
        try:
            recipient, variables = self.notifier.build(schedule.kind, schedule.entity_id)
            self.notifier.deliver(schedule, variables, recipient)
            status = ReminderStatus.SENT
        except (ReminderError, EntityNotFoundError, StoreError) as exc:
            status = ReminderStatus.FAILED
            error = str(exc)
            logger.warning("Reminder %s failed: %s", schedule.id, exc)
        except Exception as exc:
            status = ReminderStatus.FAILED
            error = str(exc)
            logger.error("Reminder %s delivery raised: %s", schedule.id, exc, exc_info=True)

        self.repository.update_schedule(
            schedule.id,
            status=status,
            attempts=schedule.attempts + 1,
            last_attempt_at=self.clock(),
        )
        self._log(
            REMINDER_SENT if status is ReminderStatus.SENT else "reminder_failed",
            schedule.entity_id,
            "success" if status is ReminderStatus.SENT else "error",
            reminder_id=schedule.id,
            kind=schedule.kind.value,
            error=error,
        )

        if self.on_fired is not None:
            context = {
                **variables,
                "reminder_id": schedule.id,
                "reminder_kind": schedule.kind.value,
                "reminder_status": status.value,
            }
            self.on_fired(REMINDER_TRIGGERS[schedule.kind], schedule.entity_id, context)
