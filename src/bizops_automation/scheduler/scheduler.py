"""Task scheduler built on APScheduler.

This module provides the job scheduler used for the periodic sweeps and for
one-shot reminder timers.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import SchedulerConfig
from ..core.logger import get_logger

logger = get_logger("scheduler")


class TaskScheduler:
    """Task scheduler for managing periodic and one-shot jobs.

    This class wraps APScheduler and provides a simple interface for
    registering and managing scheduled jobs.

    Example:
        ```python
        from bizops_automation.scheduler import TaskScheduler

        scheduler = TaskScheduler(config)
        scheduler.start()

        scheduler.add_job(sweep.check_overdue_invoices, trigger="interval", hours=1)
        scheduler.add_job(send_digest, trigger="cron", hour="8", minute="0")
        scheduler.add_job(fire, trigger="date", run_date=when, job_id="reminder.42")
        ```
    """

    def __init__(self, config: SchedulerConfig | None = None):
        """Initialize the task scheduler.

        Args:
            config: Scheduler configuration
        """
        self.config = config or SchedulerConfig()
        self._scheduler: BackgroundScheduler | None = None
        self._job_run_counts: dict[str, int] = {}
        self._job_error_counts: dict[str, int] = {}
        self._setup_scheduler()

    def _setup_scheduler(self) -> None:
        """Setup APScheduler with an in-memory job store."""
        # Reminder callbacks are bound methods, so jobs are never persisted.
        jobstores = {"default": MemoryJobStore()}
        executors = {"default": ThreadPoolExecutor(max_workers=self.config.max_workers)}

        job_defaults = {
            "coalesce": self.config.job_coalesce,
            "max_instances": self.config.max_instances,
            "misfire_grace_time": self.config.misfire_grace_time,
        }

        self._scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.config.timezone,
        )

        self._scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)

        logger.info(f"Scheduler initialized with timezone: {self.config.timezone}")

    def _job_executed(self, event: JobExecutionEvent) -> None:
        """Handler for successful job execution.

        Args:
            event: Job execution event
        """
        job_id = event.job_id
        self._job_run_counts[job_id] = self._job_run_counts.get(job_id, 0) + 1
        logger.debug(f"Job {job_id} executed successfully")

    def _job_error(self, event: JobExecutionEvent) -> None:
        """Handler for job execution errors.

        Args:
            event: Job execution event
        """
        job_id = event.job_id
        self._job_run_counts[job_id] = self._job_run_counts.get(job_id, 0) + 1
        self._job_error_counts[job_id] = self._job_error_counts.get(job_id, 0) + 1
        logger.error(
            f"Job {job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )

    def start(self) -> None:
        """Start the scheduler.

        Raises:
            RuntimeError: If scheduler is not enabled in config
        """
        if not self.config.enabled:
            raise RuntimeError("Scheduler is disabled in configuration")

        if self._scheduler and not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def _build_trigger(self, trigger: str, trigger_args: dict[str, Any]) -> Any:
        if trigger == "interval":
            return IntervalTrigger(**trigger_args)
        if trigger == "cron":
            return CronTrigger(**trigger_args, timezone=self.config.timezone)
        if trigger == "date":
            return DateTrigger(**trigger_args, timezone=self.config.timezone)
        raise ValueError(f"Unsupported trigger type: {trigger}")

    def add_job(
        self,
        func: Callable,
        trigger: str = "interval",
        job_id: str | None = None,
        replace_existing: bool = True,
        **trigger_args: Any,
    ) -> str:
        """Add a job to the scheduler.

        Args:
            func: Function to execute
            trigger: Trigger type ('interval', 'cron', 'date')
            job_id: Unique job ID (auto-generated if None)
            replace_existing: Whether to replace existing job with same ID
            **trigger_args: Trigger-specific arguments

        Returns:
            Job ID
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not initialized")

        if job_id is None:
            name = getattr(func, "__name__", "job")
            job_id = f"{name}-{uuid.uuid4().hex}"

        trigger_obj = self._build_trigger(trigger, trigger_args)
        self._scheduler.add_job(
            func,
            trigger_obj,
            id=job_id,
            replace_existing=replace_existing,
        )

        logger.debug(f"Job added: {job_id} with trigger {trigger}")
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """Remove a job from the scheduler.

        Args:
            job_id: Job ID to remove

        Returns:
            True when a job was removed, False when it no longer existed
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not initialized")

        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            # One-shot jobs are dropped by APScheduler once they run.
            return False
        logger.debug(f"Job removed: {job_id}")
        return True

    def get_jobs(self) -> list[Any]:
        """Get all scheduled jobs."""
        if not self._scheduler:
            return []

        return self._scheduler.get_jobs()

    def get_job(self, job_id: str) -> Any | None:
        """Get a specific job by ID, or None if not found."""
        if not self._scheduler:
            return None

        return self._scheduler.get_job(job_id)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return bool(self._scheduler and self._scheduler.running)

    def get_scheduler_status(self) -> dict[str, Any]:
        """Get a summary of the scheduler state."""
        if not self._scheduler:
            return {"status": "not_initialized", "running": False}

        jobs = self.get_jobs()
        return {
            "status": "running" if self._scheduler.running else "stopped",
            "running": self._scheduler.running,
            "timezone": str(self.config.timezone),
            "total_jobs": len(jobs),
            "next_run_times": {
                job.id: _format_time(getattr(job, "next_run_time", None)) for job in jobs
            },
        }

    def get_job_run_count(self, job_id: str) -> int:
        """Number of times a job has run (successfully or not)."""
        return self._job_run_counts.get(job_id, 0)

    def get_job_error_count(self, job_id: str) -> int:
        """Number of times a job has raised."""
        return self._job_error_counts.get(job_id, 0)


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
