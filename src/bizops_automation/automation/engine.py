"""Automation engine facade.

This module provides the AutomationEngine class that coordinates:
- Rule and template management
- Trigger handling for business events
- Action execution and execution tracking
- Reminder scheduling and recovery
- Periodic sweeps and analytics
"""

from __future__ import annotations

import calendar
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from ..core.config import EngineConfig
from ..core.exceptions import ConfigurationError, EntityNotFoundError, StoreError
from ..core.logger import get_logger
from ..core.store import TabularStore, create_store, new_id
from ..scheduler import SchedulerTimerBackend, TaskScheduler, TimerBackend
from .actions import ActionDispatcher, ActionServices
from .channels import NotificationChannel, default_channels
from .defaults import DEFAULT_RULES, DEFAULT_TEMPLATES
from .matcher import RuleMatcher
from .models import (
    Clock,
    NotificationTemplate,
    ReminderConfig,
    ReminderKind,
    ReminderSchedule,
    Rule,
    TriggerEvent,
    TriggerType,
    WorkflowExecution,
    isoformat,
    parse_action,
    to_datetime,
    utc_now,
)
from .reminders import ReminderNotifier, ReminderScheduler, adjust_config_for_priority
from .repository import CLIENTS, INVOICES, PROJECTS, RULES, TASKS, AutomationRepository
from .sweep import PeriodicSweep
from .tracker import ExecutionTracker

logger = get_logger("automation")

RECURRENCE_FREQUENCIES = ("daily", "weekly", "monthly", "quarterly", "yearly")


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_occurrence(current: datetime, frequency: str, interval: int) -> datetime:
    """Advance ``current`` by one recurrence step."""
    if frequency == "daily":
        return current + timedelta(days=interval)
    if frequency == "weekly":
        return current + timedelta(weeks=interval)
    if frequency == "monthly":
        return _add_months(current, interval)
    if frequency == "quarterly":
        return _add_months(current, 3 * interval)
    if frequency == "yearly":
        return _add_months(current, 12 * interval)
    raise ConfigurationError(f"Unsupported frequency: {frequency}", field="frequency")


class AutomationEngine:
    """Reacts to business events by running matching rules and scheduling reminders.

    Example:
        ```python
        from bizops_automation import AutomationEngine, EngineConfig
        from bizops_automation.core import SQLiteTabularStore

        engine = AutomationEngine(SQLiteTabularStore("bizops.db"), EngineConfig())
        engine.start()
        engine.on_task_completed("task-1")
        ```
    """

    def __init__(
        self,
        store: TabularStore | None = None,
        config: EngineConfig | None = None,
        *,
        channels: Mapping[str, NotificationChannel] | None = None,
        scheduler: TaskScheduler | None = None,
        timers: TimerBackend | None = None,
        clock: Clock | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or create_store(self.config.store.backend, self.config.store.path)
        self.clock = clock or utc_now
        self.repository = AutomationRepository(self.store)
        self.channels: dict[str, NotificationChannel] = (
            dict(channels) if channels is not None else default_channels(self.store, self.clock)
        )
        self.scheduler = scheduler or TaskScheduler(self.config.scheduler)
        self.timers = timers or SchedulerTimerBackend(self.scheduler)

        self.dispatcher = ActionDispatcher(
            ActionServices(
                repository=self.repository,
                channels=self.channels,
                webhook=self.config.webhook,
                clock=self.clock,
                http_client=http_client,
            )
        )
        self.matcher = RuleMatcher(self.repository)
        self.tracker = ExecutionTracker(self.repository, self.dispatcher, self.clock)
        self.notifier = ReminderNotifier(
            self.repository, self.dispatcher, self.config.reminders, self.clock
        )
        self.reminders = ReminderScheduler(
            self.repository,
            self.timers,
            self.notifier,
            self.config.reminders,
            self.clock,
            on_fired=self.trigger_event,
        )
        self.sweep = PeriodicSweep(self, self.config.sweep)
        self.last_recovery: dict[str, int] = {}
        self._started = False

    def now(self) -> datetime:
        return self.clock()

    def _log(
        self,
        log_type: str,
        entity_id: str | None,
        action: str,
        status: str = "success",
        **details: Any,
    ) -> None:
        try:
            self.repository.write_log(
                log_type, entity_id, action, status, details, timestamp=self.clock()
            )
        except StoreError as exc:
            logger.error("Failed to write automation log: %s", exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Seed defaults when configured, recover reminders and start the sweeps."""
        if self._started:
            return

        if self.config.seed_defaults:
            self.seed_defaults()

        self.last_recovery = self.reminders.recover()

        if self.config.scheduler.enabled:
            if self.config.sweep.enabled:
                self.sweep.register(self.scheduler)
            self.scheduler.start()
        else:
            logger.info("Scheduler disabled; sweeps must be run manually")

        self._started = True
        logger.info("Automation engine started")

    def shutdown(self, wait: bool = True) -> None:
        """Disarm reminder timers and stop the scheduler."""
        self.reminders.disarm_all()
        self.scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Automation engine stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Trigger ingress
    # ------------------------------------------------------------------
    def trigger_event(
        self,
        trigger_type: TriggerType | str,
        entity_id: str | None,
        context: Mapping[str, Any] | None = None,
    ) -> list[WorkflowExecution]:
        """Run every matching active rule for a business event.

        Never raises; failures are logged and recorded as failed executions.
        """
        try:
            resolved = TriggerType(trigger_type)
        except ValueError:
            logger.warning("Ignoring unknown trigger type: %s", trigger_type)
            return []

        event = TriggerEvent(resolved, entity_id, dict(context or {}))
        scoped = event.scoped_context()
        executions: list[WorkflowExecution] = []

        try:
            candidates = self.matcher.candidates(resolved)
        except Exception as exc:
            logger.error("Failed to load rules for %s: %s", resolved.value, exc, exc_info=True)
            self._log("trigger", entity_id, f"{resolved.value}_trigger", "error", error=str(exc))
            return []

        for rule in candidates:
            try:
                matched = self.matcher.check(rule, scoped)
            except Exception as exc:
                logger.error("Condition evaluation failed for rule %s: %s", rule.id, exc)
                executions.append(self.tracker.record_failure(rule, scoped, exc))
                continue
            if not matched:
                continue
            try:
                executions.append(self.tracker.fire(rule, scoped))
            except Exception as exc:
                logger.error("Rule %s could not be executed: %s", rule.id, exc, exc_info=True)

        self._log(
            "trigger",
            entity_id,
            f"{resolved.value}_trigger",
            "success",
            rules_fired=[execution.rule_id for execution in executions],
        )
        logger.debug(
            "Trigger %s for %s produced %d execution(s)",
            resolved.value,
            entity_id,
            len(executions),
        )
        return executions

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------
    def _build_rule(self, data: Mapping[str, Any], strict_actions: bool = True) -> Rule:
        payload = dict(data)
        actions = payload.get("actions") or []
        try:
            payload["actions"] = [
                parse_action(item, allow_unknown=not strict_actions) for item in actions
            ]
            return Rule.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid rule definition: {exc}") from exc

    def create_rule(self, definition: Mapping[str, Any]) -> Rule:
        """Validate and store a new rule.

        Raises:
            ConfigurationError: On unknown operators, trigger types or action types.
        """
        now = self.clock()
        data = {
            **definition,
            "id": definition.get("id") or new_id(),
            "created_at": now,
            "updated_at": now,
        }
        rule = self._build_rule(data)
        self.repository.insert_rule(rule)
        self.matcher.invalidate()
        self._log("rule", rule.id, "automation_rule_created", name=rule.name)
        logger.info("Rule created: %s (%s)", rule.name, rule.id)
        return rule

    def update_rule(self, rule_id: str, updates: Mapping[str, Any]) -> Rule | None:
        """Apply a partial update; returns None when the rule does not exist."""
        existing = self.repository.get_rule(rule_id)
        if existing is None:
            return None

        data = existing.model_dump()
        data.update({key: value for key, value in updates.items() if key not in {"id", "created_at"}})
        data["updated_at"] = self.clock()
        # Stored actions outside the catalog are only rejected when replaced.
        rule = self._build_rule(data, strict_actions="actions" in updates)
        self.repository.save_rule(rule)
        self.matcher.invalidate()
        self._log("rule", rule.id, "automation_rule_updated", fields=sorted(updates))
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        """Deactivate a rule; rules are never hard-deleted."""
        return self.update_rule(rule_id, {"active": False}) is not None

    def get_rule(self, rule_id: str) -> Rule | None:
        return self.repository.get_rule(rule_id)

    def list_rules(self, active_only: bool = False) -> list[Rule]:
        rules = self.repository.list_rules(active_only=active_only)
        return sorted(rules, key=lambda rule: (rule.created_at, rule.id))

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def create_template(self, definition: Mapping[str, Any]) -> NotificationTemplate:
        data = {**definition, "id": definition.get("id") or new_id(), "created_at": self.clock()}
        try:
            template = NotificationTemplate.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid template definition: {exc}") from exc
        self.repository.insert_template(template)
        self._log("template", template.id, "notification_template_created", name=template.name)
        return template

    def get_template(self, template_id: str) -> NotificationTemplate | None:
        return self.repository.get_template(template_id)

    def list_templates(self, active_only: bool = False) -> list[NotificationTemplate]:
        return self.repository.list_templates(active_only=active_only)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------
    @staticmethod
    def _reminder_config(config: ReminderConfig | Mapping[str, Any]) -> ReminderConfig:
        if isinstance(config, ReminderConfig):
            return config
        try:
            return ReminderConfig.model_validate(dict(config))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid reminder config: {exc}") from exc

    def schedule_reminder(
        self,
        kind: ReminderKind | str,
        entity_id: str,
        target_date: datetime | str,
        config: ReminderConfig | Mapping[str, Any],
    ) -> list[ReminderSchedule]:
        return self.reminders.schedule_reminder(
            ReminderKind(kind), entity_id, target_date, self._reminder_config(config)
        )

    def cancel_pending(self, kind: ReminderKind | str, entity_id: str) -> int:
        return self.reminders.cancel_pending(ReminderKind(kind), entity_id)

    def stale_pending(self) -> list[ReminderSchedule]:
        return self.reminders.stale_pending()

    def _require(self, collection: str, entity_id: str) -> dict[str, Any]:
        row = self.repository.get_row(collection, entity_id)
        if row is None:
            raise EntityNotFoundError(collection, entity_id)
        return row

    def _schedule_for_entity(
        self,
        kind: ReminderKind,
        collection: str,
        entity_id: str,
        date_column: str,
        config: ReminderConfig | Mapping[str, Any],
    ) -> list[ReminderSchedule]:
        action = f"{kind.value}_reminder_scheduled"
        try:
            row = self._require(collection, entity_id)
            resolved = self._reminder_config(config)
            if kind is ReminderKind.TASK_DUE:
                resolved = adjust_config_for_priority(resolved, row.get("priority"))
            return self.reminders.schedule_reminder(kind, entity_id, row.get(date_column), resolved)
        except Exception as exc:
            self._log("reminder", entity_id, action, "error", error=str(exc))
            raise

    def schedule_project_deadline_reminder(
        self, project_id: str, config: ReminderConfig | Mapping[str, Any]
    ) -> list[ReminderSchedule]:
        return self._schedule_for_entity(
            ReminderKind.PROJECT_DEADLINE, PROJECTS, project_id, "end_date", config
        )

    def schedule_invoice_payment_reminder(
        self, invoice_id: str, config: ReminderConfig | Mapping[str, Any]
    ) -> list[ReminderSchedule]:
        return self._schedule_for_entity(
            ReminderKind.INVOICE_PAYMENT, INVOICES, invoice_id, "due_date", config
        )

    def schedule_task_due_reminder(
        self, task_id: str, config: ReminderConfig | Mapping[str, Any]
    ) -> list[ReminderSchedule]:
        """Schedule task reminders, shifted by the task's priority."""
        return self._schedule_for_entity(ReminderKind.TASK_DUE, TASKS, task_id, "due_date", config)

    def schedule_client_followup(
        self,
        client_id: str,
        project_id: str,
        milestone_type: str,
        config: ReminderConfig | Mapping[str, Any],
    ) -> ReminderSchedule:
        """Send a milestone follow-up to a client right away."""
        return self.reminders.schedule_now(
            ReminderKind.CLIENT_FOLLOWUP,
            f"{client_id}:{project_id}:{milestone_type}",
            self._reminder_config(config),
        )

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------
    def on_task_completed(self, task_id: str) -> list[WorkflowExecution]:
        """Raise task_completed and detect project completion."""
        task = self.repository.get_row(TASKS, task_id)
        if task is None:
            logger.warning("Task not found: %s", task_id)
            return []

        project_id = task.get("project_id")
        project = self.repository.get_row(PROJECTS, project_id)
        siblings = self.repository.query(TASKS, {"project_id": project_id}) if project_id else []
        all_done = bool(siblings) and all(row.get("status") == "completed" for row in siblings)

        executions = self.trigger_event(
            TriggerType.TASK_COMPLETED,
            task_id,
            {
                "task_id": task_id,
                "project_id": project_id,
                "task_title": task.get("title"),
                "completion_date": isoformat(self.clock()),
                "all_tasks_completed": all_done,
            },
        )

        if all_done and project is not None and project.get("status") != "completed":
            self.repository.update_row(
                PROJECTS,
                project_id,
                {"status": "completed", "progress_percentage": 100},
            )
            executions += self.on_project_milestone(
                project_id,
                "project_completed",
                {"total_tasks": len(siblings), "completion_date": isoformat(self.clock())},
            )
        return executions

    def on_project_milestone(
        self,
        project_id: str,
        milestone_type: str,
        milestone_data: Mapping[str, Any] | None = None,
    ) -> list[WorkflowExecution]:
        project = self.repository.get_row(PROJECTS, project_id) or {}
        return self.trigger_event(
            TriggerType.PROJECT_MILESTONE,
            project_id,
            {
                "project_id": project_id,
                "project_name": project.get("name"),
                "client_id": project.get("client_id"),
                "milestone_type": milestone_type,
                "milestone_data": dict(milestone_data or {}),
                "timestamp": isoformat(self.clock()),
            },
        )

    def on_payment_received(
        self,
        invoice_id: str,
        payment_amount: float,
        payment_data: Mapping[str, Any] | None = None,
    ) -> list[WorkflowExecution]:
        """Raise payment_received and cancel the invoice's pending payment reminders."""
        invoice = self.repository.get_row(INVOICES, invoice_id) or {}
        client = self.repository.get_row(CLIENTS, invoice.get("client_id")) or {}
        executions = self.trigger_event(
            TriggerType.PAYMENT_RECEIVED,
            invoice_id,
            {
                "invoice_id": invoice_id,
                "invoice_number": invoice.get("invoice_number"),
                "client_id": invoice.get("client_id"),
                "client_name": client.get("name"),
                "client_email": client.get("email"),
                "payment_amount": payment_amount,
                "payment_data": dict(payment_data or {}),
                "timestamp": isoformat(self.clock()),
            },
        )
        self.reminders.cancel_pending(ReminderKind.INVOICE_PAYMENT, invoice_id)
        return executions

    def on_invoice_overdue(self, invoice_id: str) -> list[WorkflowExecution]:
        invoice = self.repository.get_row(INVOICES, invoice_id)
        if invoice is None:
            logger.warning("Invoice not found: %s", invoice_id)
            return []

        now = self.clock()
        due = to_datetime(invoice.get("due_date"))
        days_overdue = max(0, (now - due).days) if due else 0
        return self.trigger_event(
            TriggerType.INVOICE_OVERDUE,
            invoice_id,
            {
                "invoice_id": invoice_id,
                "invoice_number": invoice.get("invoice_number"),
                "client_id": invoice.get("client_id"),
                "amount": invoice.get("total_amount"),
                "days_overdue": days_overdue,
                "timestamp": isoformat(now),
            },
        )

    # ------------------------------------------------------------------
    # Recurring tasks
    # ------------------------------------------------------------------
    def schedule_recurring_task(
        self,
        task_data: Mapping[str, Any],
        frequency: str,
        interval: int = 1,
        end_date: datetime | str | None = None,
        max_occurrences: int = 12,
    ) -> list[str]:
        """Create a series of task rows, one per occurrence.

        Raises:
            ConfigurationError: On an unsupported frequency or non-positive interval.
        """
        if frequency not in RECURRENCE_FREQUENCIES:
            raise ConfigurationError(f"Unsupported frequency: {frequency}", field="frequency")
        if interval < 1:
            raise ConfigurationError("interval must be at least 1", field="interval")

        current = to_datetime(task_data.get("due_date")) or self.clock()
        until = to_datetime(end_date)
        title = task_data.get("title") or "Recurring task"
        task_ids: list[str] = []

        while len(task_ids) < max_occurrences:
            if until is not None and current > until:
                break
            row = {
                "status": "todo",
                "priority": "medium",
                **task_data,
                "title": f"{title} ({len(task_ids) + 1})",
                "due_date": current.date().isoformat(),
                "created_at": isoformat(self.clock()),
            }
            task_ids.append(self.repository.create_row(TASKS, row))
            current = next_occurrence(current, frequency, interval)

        self._log(
            "task",
            None,
            "recurring_tasks_scheduled",
            task_ids=task_ids,
            frequency=frequency,
            interval=interval,
        )
        return task_ids

    # ------------------------------------------------------------------
    # Defaults and analytics
    # ------------------------------------------------------------------
    def seed_defaults(self) -> dict[str, int]:
        """Create the default templates and rules when their collections are empty."""
        seeded = {"templates": 0, "rules": 0}
        if not self.repository.list_templates():
            for definition in DEFAULT_TEMPLATES:
                self.create_template(definition)
                seeded["templates"] += 1
        if not self.repository.query(RULES):
            for definition in DEFAULT_RULES:
                self.create_rule(definition)
                seeded["rules"] += 1
        if any(seeded.values()):
            logger.info("Seeded defaults: %s", seeded)
        return seeded

    def get_analytics(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Any]:
        return self.tracker.get_analytics(start, end, top_n=self.config.analytics.top_rules)
