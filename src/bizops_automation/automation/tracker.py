"""Workflow execution tracking and analytics."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from ..core.exceptions import StoreError
from ..core.logger import get_logger
from ..core.store import new_id
from .actions import ActionDispatcher
from .models import (
    ActionType,
    Clock,
    ExecutionStatus,
    Rule,
    WorkflowExecution,
    to_datetime,
    utc_now,
)
from .repository import AutomationRepository

logger = get_logger("automation.tracker")

NOTIFICATION_SENT = "notification_sent"
REMINDER_SENT = "reminder_sent"


def _snapshot(context: Mapping[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(dict(context), default=str))


class ExecutionTracker:
    """Runs a matched rule's actions and records the execution."""

    def __init__(
        self,
        repository: AutomationRepository,
        dispatcher: ActionDispatcher,
        clock: Clock | None = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Recording helpers
    # ------------------------------------------------------------------

    def _insert(self, execution: WorkflowExecution) -> None:
        try:
            self.repository.insert_execution(execution)
        except StoreError as exc:
            logger.error("Failed to record execution %s: %s", execution.id, exc)

    def _save(self, execution: WorkflowExecution) -> None:
        try:
            self.repository.save_execution(execution)
        except StoreError as exc:
            logger.error("Failed to update execution %s: %s", execution.id, exc)

    def _log(self, log_type: str, entity_id: str | None, action: str, status: str, **details: Any) -> None:
        try:
            self.repository.write_log(
                log_type, entity_id, action, status, details, timestamp=self.clock()
            )
        except StoreError as exc:
            logger.error("Failed to write automation log: %s", exc)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def fire(self, rule: Rule, context: Mapping[str, Any]) -> WorkflowExecution:
        """Execute every action of ``rule`` in order and persist the outcome."""
        execution = WorkflowExecution(
            id=new_id(),
            rule_id=rule.id,
            trigger_type=rule.trigger.type.value,
            context=_snapshot(context),
            status=ExecutionStatus.RUNNING,
            started_at=self.clock(),
        )
        self._insert(execution)
        logger.info("Executing rule %s (%s)", rule.name, rule.id)

        try:
            for action in rule.actions:
                result = self.dispatcher.execute(action, context)
                execution.actions_executed.append(action.type)
                execution.action_results.append(result.summary(action.type))
                if action.type == ActionType.SEND_NOTIFICATION.value and result.success:
                    self._log("notification", rule.id, NOTIFICATION_SENT, "success",
                              execution_id=execution.id)
            execution.status = ExecutionStatus.COMPLETED
        except Exception as exc:
            logger.error("Rule %s aborted: %s", rule.id, exc, exc_info=True)
            execution.status = ExecutionStatus.FAILED
            execution.error = str(exc)

        execution.completed_at = self.clock()
        self._save(execution)
        self._log(
            "workflow",
            rule.id,
            "rule_executed",
            "success" if execution.status is ExecutionStatus.COMPLETED else "error",
            execution_id=execution.id,
            actions_executed=execution.actions_executed,
            error=execution.error,
        )
        return execution

    def record_failure(
        self, rule: Rule, context: Mapping[str, Any], error: Exception | str
    ) -> WorkflowExecution:
        """Write a terminal failed execution without running any action."""
        now = self.clock()
        execution = WorkflowExecution(
            id=new_id(),
            rule_id=rule.id,
            trigger_type=rule.trigger.type.value,
            context=_snapshot(context),
            status=ExecutionStatus.FAILED,
            started_at=now,
            completed_at=now,
            error=str(error),
        )
        self._insert(execution)
        self._log("workflow", rule.id, "rule_failed", "error",
                  execution_id=execution.id, error=execution.error)
        return execution

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_analytics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        top_n: int = 10,
    ) -> dict[str, Any]:
        """Aggregate executions and logs inside ``[start, end]``.

        Defaults to the last 30 days.
        """
        end = to_datetime(end) or self.clock()
        start = to_datetime(start) or end - timedelta(days=30)

        executions = [
            execution
            for execution in self.repository.list_executions()
            if start <= execution.started_at <= end
        ]
        total = len(executions)
        successful = sum(1 for e in executions if e.status is ExecutionStatus.COMPLETED)
        failed = sum(1 for e in executions if e.status is ExecutionStatus.FAILED)
        rate = round(successful / total * 100, 2) if total else 0.0

        counts = Counter(execution.rule_id for execution in executions)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:top_n]
        names = {rule.id: rule.name for rule in self.repository.list_rules()}
        most_triggered = [
            {"rule_id": rule_id, "rule_name": names.get(rule_id, "Unknown Rule"), "count": count}
            for rule_id, count in ranked
        ]

        durations = [
            e.duration_ms
            for e in executions
            if e.status is ExecutionStatus.COMPLETED and e.duration_ms is not None
        ]
        avg_ms = round(sum(durations) / len(durations), 2) if durations else 0.0

        logs = [
            log
            for log in self.repository.list_logs(status="success")
            if start <= log.timestamp <= end
        ]
        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": failed,
            "execution_rate": rate,
            "most_triggered_rules": most_triggered,
            "performance_metrics": {
                "avg_execution_time": avg_ms,
                "total_notifications_sent": sum(1 for log in logs if log.action == NOTIFICATION_SENT),
                "total_reminders_sent": sum(1 for log in logs if log.action == REMINDER_SENT),
            },
        }
