"""Business operations automation engine.

Reacts to business events in a small-business workspace (projects, tasks,
invoices, clients) with:
- Declarative rules: trigger, conditions and typed actions
- Persisted reminders with escalation and restart recovery
- Periodic sweeps for overdue invoices and approaching deadlines
- Execution tracking and analytics

Example:
    ```python
    from bizops_automation import AutomationEngine, EngineConfig

    config = EngineConfig.from_yaml("bizops.yaml")
    engine = AutomationEngine(config=config)
    engine.start()

    engine.create_rule(
        {
            "name": "Late fee",
            "trigger": {"type": "invoice_overdue"},
            "actions": [{"type": "apply_late_fee", "parameters": {"fee_percentage": 1.5}}],
        }
    )
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .automation import AutomationEngine, ReminderConfig, Rule, TriggerType
from .core import (
    EngineConfig,
    InMemoryTabularStore,
    SQLiteTabularStore,
    get_logger,
    setup_logging,
)
from .scheduler import TaskScheduler

__all__ = [
    "__version__",
    "AutomationEngine",
    "EngineConfig",
    "InMemoryTabularStore",
    "ReminderConfig",
    "Rule",
    "SQLiteTabularStore",
    "TaskScheduler",
    "TriggerType",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("bizops-automation")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
