"""Workflow automation for projects, tasks, invoices and clients.

This package provides:
- Declarative rules (trigger, conditions, actions)
- Typed action executors
- Persisted reminders with armed timers
- Periodic sweeps and execution analytics
"""

from .actions import ActionDispatcher, ActionResult, ActionServices, BaseActionExecutor
from .channels import InAppChannel, LoggingChannel, NotificationChannel, default_channels
from .conditions import check_condition, evaluate
from .engine import AutomationEngine
from .matcher import RuleMatcher
from .models import (
    Condition,
    DeliveryMethod,
    EscalationRule,
    ExecutionStatus,
    NotificationTemplate,
    Priority,
    ReminderConfig,
    ReminderKind,
    ReminderSchedule,
    ReminderStatus,
    Rule,
    TriggerType,
    WorkflowExecution,
    parse_action,
)
from .reminders import ReminderNotifier, ReminderScheduler, calculate_reminder_dates
from .repository import AutomationRepository
from .sweep import PeriodicSweep
from .tracker import ExecutionTracker

__all__ = [
    # Engine
    "AutomationEngine",
    "AutomationRepository",
    "ExecutionTracker",
    "PeriodicSweep",
    "RuleMatcher",
    # Actions
    "ActionDispatcher",
    "ActionResult",
    "ActionServices",
    "BaseActionExecutor",
    "parse_action",
    # Channels
    "InAppChannel",
    "LoggingChannel",
    "NotificationChannel",
    "default_channels",
    # Conditions
    "check_condition",
    "evaluate",
    # Models
    "Condition",
    "DeliveryMethod",
    "EscalationRule",
    "ExecutionStatus",
    "NotificationTemplate",
    "Priority",
    "ReminderConfig",
    "ReminderKind",
    "ReminderSchedule",
    "ReminderStatus",
    "Rule",
    "TriggerType",
    "WorkflowExecution",
    # Reminders
    "ReminderNotifier",
    "ReminderScheduler",
    "calculate_reminder_dates",
]
