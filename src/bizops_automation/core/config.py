"""Configuration management for the automation engine.

This module provides configuration models and loading functionality using Pydantic
for validation and type safety.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DOTENV_LOADED = False


def _load_env_once() -> None:
    """Load environment variables from a .env file exactly once."""

    global _DOTENV_LOADED
    if not _DOTENV_LOADED:
        load_dotenv()
        _DOTENV_LOADED = True


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in configuration data."""

    if isinstance(data, str):
        return os.path.expandvars(data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    log_file: str | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10485760, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")

    @field_validator("level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level


class SchedulerConfig(BaseModel):
    """Configuration for the APScheduler job scheduler."""

    enabled: bool = Field(default=True, description="Enable scheduler")
    timezone: str = Field(default="UTC", description="Timezone for jobs")

    # A single worker keeps reminder firings and sweep ticks on one control flow
    max_workers: int = Field(default=1, description="Maximum thread pool workers")
    job_coalesce: bool = Field(default=True, description="Combine missed job runs")
    max_instances: int = Field(default=1, description="Max concurrent instances per job")
    misfire_grace_time: int = Field(default=60, description="Grace time for missed jobs (seconds)")

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be at least 1")
        return value


class SweepConfig(BaseModel):
    """Cadence and window settings for the periodic sweeps."""

    enabled: bool = Field(default=True, description="Register sweep jobs on engine start")
    overdue_interval_hours: float = Field(
        default=1.0, gt=0.0, description="Hours between overdue-invoice sweeps"
    )
    deadline_interval_hours: float = Field(
        default=6.0, gt=0.0, description="Hours between approaching-deadline sweeps"
    )
    cleanup_interval_hours: float = Field(
        default=24.0, gt=0.0, description="Hours between retention cleanups"
    )
    lookahead_days: int = Field(
        default=3, ge=0, description="Deadline window scanned by the deadline sweep"
    )
    retention_days: int = Field(
        default=30, ge=1, description="Age after which executions and logs are deleted"
    )
    deadline_days_before: int = Field(
        default=1, ge=0, description="days_before used for sweep-created reminders"
    )
    project_deadline_template: str = Field(
        default="project_deadline_approaching",
        description="Template id used for sweep-created project reminders",
    )
    task_due_template: str = Field(
        default="task_due_approaching",
        description="Template id used for sweep-created task reminders",
    )


class ReminderSettings(BaseModel):
    """Reminder delivery and recovery settings."""

    recovery_policy: Literal["skip", "fire"] = Field(
        default="skip",
        description="What to do with pending reminders already past due at start-up",
    )
    admin_recipient: str = Field(
        default="admin@example.com",
        description="Recipient for internal reminders (task due dates)",
    )


class WebhookClientConfig(BaseModel):
    """Default HTTP settings for call_webhook actions."""

    timeout: float = Field(default=10.0, ge=0.0, description="Default HTTP timeout")
    headers: dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"},
        description="Headers sent with every webhook call",
    )


class StoreConfig(BaseModel):
    """Tabular store selection."""

    backend: Literal["memory", "sqlite"] = Field(default="memory", description="Store backend")
    path: str | None = Field(default=None, description="Path to the SQLite database")

    @model_validator(mode="after")
    def validate_path(self) -> StoreConfig:
        if self.backend == "sqlite" and not self.path:
            raise ValueError("SQLite store requires 'path'")
        return self


class AnalyticsConfig(BaseModel):
    """Analytics aggregation settings."""

    top_rules: int = Field(default=10, ge=1, description="Number of most-fired rules reported")


class EngineConfig(BaseSettings):
    """Main configuration for the automation engine."""

    model_config = SettingsConfigDict(
        env_prefix="BIZOPS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig, description="Scheduler configuration"
    )
    sweep: SweepConfig = Field(default_factory=SweepConfig, description="Sweep configuration")
    reminders: ReminderSettings = Field(
        default_factory=ReminderSettings, description="Reminder configuration"
    )
    webhook: WebhookClientConfig = Field(
        default_factory=WebhookClientConfig, description="Webhook client settings"
    )
    store: StoreConfig = Field(default_factory=StoreConfig, description="Store configuration")
    analytics: AnalyticsConfig = Field(
        default_factory=AnalyticsConfig, description="Analytics configuration"
    )
    seed_defaults: bool = Field(
        default=False,
        description="Create default templates and rules on start when none exist",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a YAML file."""

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in config file: {exc}") from exc

        if not config_data:
            config_data = {}

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def from_json(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""

        import json

        _load_env_once()
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as handle:
            try:
                config_data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in config file: {exc}") from exc

        config_data = _expand_env_vars(config_data)
        return cls(**config_data)

    @classmethod
    def load(cls, path: str | Path) -> EngineConfig:
        """Load configuration choosing the parser from the file extension."""

        if Path(path).suffix.lower() == ".json":
            return cls.from_json(path)
        return cls.from_yaml(path)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""

        return self.model_dump()
