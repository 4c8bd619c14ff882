"""Row mapping between the tabular store and the automation models.

Nested structures are stored as JSON text in single columns; everything above
this module works on typed models.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from ..core.exceptions import ConfigurationError, StoreError
from ..core.logger import get_logger
from ..core.store import TabularStore, new_id
from .models import (
    AutomationLog,
    ExecutionStatus,
    NotificationTemplate,
    ReminderConfig,
    ReminderKind,
    ReminderSchedule,
    ReminderStatus,
    Rule,
    WorkflowExecution,
    isoformat,
    to_datetime,
    utc_now,
)

logger = get_logger("automation.repository")

RULES = "automation_rules"
REMINDERS = "reminder_schedules"
TEMPLATES = "notification_templates"
EXECUTIONS = "workflow_executions"
LOGS = "automation_logs"
IN_APP_NOTIFICATIONS = "in_app_notifications"
PROJECTS = "projects"
TASKS = "tasks"
INVOICES = "invoices"
CLIENTS = "clients"


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _loads(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Discarding malformed JSON column: %r", value)
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


class AutomationRepository:
    """Typed access to the automation collections of a tabular store."""

    def __init__(self, store: TabularStore):
        self.store = store

    # ------------------------------------------------------------------
    # Generic entity access
    # ------------------------------------------------------------------

    def get_row(self, collection: str, row_id: str | None) -> dict[str, Any] | None:
        if not row_id:
            return None
        rows = self.store.query(collection, {"id": row_id})
        return rows[0] if rows else None

    def create_row(self, collection: str, row: Mapping[str, Any]) -> str:
        return self.store.create(collection, row)

    def update_row(self, collection: str, row_id: str, patch: Mapping[str, Any]) -> bool:
        return self.store.update(collection, row_id, patch)

    def query(self, collection: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        if not filters:
            return self.store.read_all(collection)
        return self.store.query(collection, filters)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def encode_rule(rule: Rule) -> dict[str, Any]:
        data = rule.model_dump(mode="json")
        return {
            "id": rule.id,
            "name": rule.name,
            "description": rule.description,
            "trigger": _dumps(data["trigger"]),
            "conditions": _dumps(data["conditions"]),
            "actions": _dumps(data["actions"]),
            "active": rule.active,
            "created_at": isoformat(rule.created_at),
            "updated_at": isoformat(rule.updated_at),
        }

    @staticmethod
    def decode_rule(row: Mapping[str, Any]) -> Rule:
        """Build a Rule from a stored row.

        Raises:
            ConfigurationError: When the stored definition is malformed.
        """
        try:
            return Rule(
                id=str(row["id"]),
                name=row.get("name") or str(row["id"]),
                description=row.get("description") or "",
                trigger=_loads(row.get("trigger"), {}),
                conditions=_loads(row.get("conditions"), []),
                actions=_loads(row.get("actions"), []),
                active=_as_bool(row.get("active", True)),
                created_at=to_datetime(row.get("created_at")) or utc_now(),
                updated_at=to_datetime(row.get("updated_at")) or utc_now(),
            )
        except (KeyError, ValidationError) as exc:
            raise ConfigurationError(f"Malformed rule row {row.get('id')}: {exc}") from exc

    def insert_rule(self, rule: Rule) -> Rule:
        self.store.create(RULES, self.encode_rule(rule))
        return rule

    def save_rule(self, rule: Rule) -> bool:
        row = self.encode_rule(rule)
        row.pop("id")
        return self.store.update(RULES, rule.id, row)

    def get_rule(self, rule_id: str) -> Rule | None:
        row = self.get_row(RULES, rule_id)
        return self.decode_rule(row) if row else None

    def list_rules(self, active_only: bool = False) -> list[Rule]:
        """Decode stored rules, skipping rows that cannot be decoded."""
        rules: list[Rule] = []
        for row in self.store.read_all(RULES):
            if active_only and not _as_bool(row.get("active", True)):
                continue
            try:
                rules.append(self.decode_rule(row))
            except ConfigurationError as exc:
                logger.error("Skipping rule %s: %s", row.get("id"), exc)
        return rules

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def insert_template(self, template: NotificationTemplate) -> NotificationTemplate:
        row = template.model_dump(mode="json")
        row["variables"] = _dumps(row["variables"])
        self.store.create(TEMPLATES, row)
        return template

    @staticmethod
    def decode_template(row: Mapping[str, Any]) -> NotificationTemplate:
        return NotificationTemplate(
            id=str(row["id"]),
            name=row.get("name") or str(row["id"]),
            channel=row.get("channel") or "email",
            subject=row.get("subject"),
            body=row.get("body") or "",
            variables=_loads(row.get("variables"), []),
            active=_as_bool(row.get("active", True)),
            created_at=to_datetime(row.get("created_at")) or utc_now(),
        )

    def get_template(self, template_id: str) -> NotificationTemplate | None:
        row = self.get_row(TEMPLATES, template_id)
        return self.decode_template(row) if row else None

    def list_templates(self, active_only: bool = False) -> list[NotificationTemplate]:
        templates = [self.decode_template(row) for row in self.store.read_all(TEMPLATES)]
        if active_only:
            return [template for template in templates if template.active]
        return templates

    # ------------------------------------------------------------------
    # Reminder schedules
    # ------------------------------------------------------------------

    @staticmethod
    def encode_schedule(schedule: ReminderSchedule) -> dict[str, Any]:
        row = schedule.to_dict()
        row["config"] = _dumps(row["config"])
        return row

    @staticmethod
    def decode_schedule(row: Mapping[str, Any]) -> ReminderSchedule:
        scheduled_at = to_datetime(row.get("scheduled_at"))
        if scheduled_at is None:
            raise StoreError(f"Reminder {row.get('id')} has no scheduled_at", REMINDERS)
        return ReminderSchedule(
            id=str(row["id"]),
            kind=ReminderKind(row["kind"]),
            entity_id=str(row["entity_id"]),
            scheduled_at=scheduled_at,
            config=ReminderConfig.model_validate(_loads(row.get("config"), {})),
            status=ReminderStatus(row.get("status") or ReminderStatus.PENDING.value),
            attempts=int(row.get("attempts") or 0),
            last_attempt_at=to_datetime(row.get("last_attempt_at")),
            created_at=to_datetime(row.get("created_at")) or utc_now(),
        )

    def insert_schedule(self, schedule: ReminderSchedule) -> ReminderSchedule:
        self.store.create(REMINDERS, self.encode_schedule(schedule))
        return schedule

    def update_schedule(self, schedule_id: str, **patch: Any) -> bool:
        row: dict[str, Any] = {}
        for key, value in patch.items():
            if isinstance(value, datetime):
                row[key] = isoformat(value)
            elif isinstance(value, (ReminderStatus, ReminderKind)):
                row[key] = value.value
            else:
                row[key] = value
        return self.store.update(REMINDERS, schedule_id, row)

    def get_schedule(self, schedule_id: str) -> ReminderSchedule | None:
        row = self.get_row(REMINDERS, schedule_id)
        return self.decode_schedule(row) if row else None

    def list_schedules(self, **filters: Any) -> list[ReminderSchedule]:
        normalised = {
            key: value.value if isinstance(value, (ReminderStatus, ReminderKind)) else value
            for key, value in filters.items()
        }
        return [self.decode_schedule(row) for row in self.query(REMINDERS, normalised)]

    def pending_schedules(
        self, kind: ReminderKind | None = None, entity_id: str | None = None
    ) -> list[ReminderSchedule]:
        filters: dict[str, Any] = {"status": ReminderStatus.PENDING}
        if kind is not None:
            filters["kind"] = kind
        if entity_id is not None:
            filters["entity_id"] = entity_id
        return self.list_schedules(**filters)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    @staticmethod
    def encode_execution(execution: WorkflowExecution) -> dict[str, Any]:
        row = execution.to_dict()
        row["context"] = _dumps(row["context"])
        row["actions_executed"] = _dumps(row["actions_executed"])
        row["action_results"] = _dumps(row["action_results"])
        return row

    @staticmethod
    def decode_execution(row: Mapping[str, Any]) -> WorkflowExecution:
        return WorkflowExecution(
            id=str(row["id"]),
            rule_id=str(row.get("rule_id") or ""),
            trigger_type=str(row.get("trigger_type") or ""),
            context=_loads(row.get("context"), {}),
            status=ExecutionStatus(row.get("status") or ExecutionStatus.PENDING.value),
            started_at=to_datetime(row.get("started_at")) or utc_now(),
            completed_at=to_datetime(row.get("completed_at")),
            error=row.get("error"),
            actions_executed=_loads(row.get("actions_executed"), []),
            action_results=_loads(row.get("action_results"), []),
        )

    def insert_execution(self, execution: WorkflowExecution) -> None:
        self.store.create(EXECUTIONS, self.encode_execution(execution))

    def save_execution(self, execution: WorkflowExecution) -> bool:
        row = self.encode_execution(execution)
        row.pop("id")
        return self.store.update(EXECUTIONS, execution.id, row)

    def list_executions(self, **filters: Any) -> list[WorkflowExecution]:
        return [self.decode_execution(row) for row in self.query(EXECUTIONS, filters)]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def write_log(
        self,
        log_type: str,
        entity_id: str | None,
        action: str,
        status: str = "success",
        details: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> AutomationLog:
        entry = AutomationLog(
            id=new_id(),
            type=log_type,
            entity_id=entity_id,
            action=action,
            status="success" if status == "success" else "error",
            details=dict(details or {}),
            timestamp=timestamp or utc_now(),
        )
        self.store.create(
            LOGS,
            {
                "id": entry.id,
                "type": entry.type,
                "entity_id": entry.entity_id,
                "action": entry.action,
                "status": entry.status,
                "details": _dumps(entry.details),
                "timestamp": isoformat(entry.timestamp),
            },
        )
        return entry

    def list_logs(self, **filters: Any) -> list[AutomationLog]:
        return [
            AutomationLog(
                id=str(row["id"]),
                type=str(row.get("type") or ""),
                entity_id=row.get("entity_id"),
                action=str(row.get("action") or ""),
                status="success" if row.get("status") == "success" else "error",
                details=_loads(row.get("details"), {}),
                timestamp=to_datetime(row.get("timestamp")) or utc_now(),
            )
            for row in self.query(LOGS, filters)
        ]

    def delete_rows(self, collection: str, ids: list[str]) -> int:
        return sum(1 for row_id in ids if self.store.delete(collection, row_id))
