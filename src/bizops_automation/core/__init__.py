"""Core modules for the automation engine.

This package contains the shared infrastructure:
- Configuration management
- Logging utilities
- Error taxonomy
- Placeholder template rendering
- Tabular stores (in-memory and SQLite)
"""

from .config import (
    AnalyticsConfig,
    EngineConfig,
    LoggingConfig,
    ReminderSettings,
    SchedulerConfig,
    StoreConfig,
    SweepConfig,
    WebhookClientConfig,
)
from .exceptions import (
    AutomationError,
    ConfigurationError,
    EntityNotFoundError,
    ReminderError,
    StoreError,
)
from .logger import get_logger, setup_logging
from .store import InMemoryTabularStore, SQLiteTabularStore, TabularStore, create_store
from .templates import RenderedTemplate, TemplateRenderError, render, render_value

__all__ = [
    # Config
    "AnalyticsConfig",
    "EngineConfig",
    "LoggingConfig",
    "ReminderSettings",
    "SchedulerConfig",
    "StoreConfig",
    "SweepConfig",
    "WebhookClientConfig",
    # Errors
    "AutomationError",
    "ConfigurationError",
    "EntityNotFoundError",
    "ReminderError",
    "StoreError",
    # Logging
    "get_logger",
    "setup_logging",
    # Stores
    "InMemoryTabularStore",
    "SQLiteTabularStore",
    "TabularStore",
    "create_store",
    # Templates
    "RenderedTemplate",
    "TemplateRenderError",
    "render",
    "render_value",
]
