"""One-shot timer backends used by the reminder scheduler."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from ..core.logger import get_logger
from .scheduler import TaskScheduler

logger = get_logger("scheduler.timers")


@runtime_checkable
class TimerBackend(Protocol):
    """Arms and disarms keyed one-shot callbacks."""

    def arm(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None: ...

    def disarm(self, key: str) -> bool: ...


class SchedulerTimerBackend:
    """Timer backend that turns each timer into an APScheduler date job.

    The memory job store orders jobs due at the same instant by job id, so ids
    carry a zero-padded arming sequence to keep those timers in arming order.
    """

    JOB_PREFIX = "timer."

    def __init__(self, scheduler: TaskScheduler):
        self.scheduler = scheduler
        self._lock = threading.Lock()
        self._jobs: dict[str, str] = {}
        self._seq = 0

    def arm(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None:
        with self._lock:
            previous = self._jobs.pop(key, None)
            if previous is not None:
                self.scheduler.remove_job(previous)
            self._seq += 1
            job_id = f"{self.JOB_PREFIX}{self._seq:012d}.{key}"

            def _run() -> None:
                with self._lock:
                    if self._jobs.get(key) == job_id:
                        del self._jobs[key]
                callback()

            self.scheduler.add_job(
                _run,
                trigger="date",
                job_id=job_id,
                replace_existing=True,
                run_date=run_at,
            )
            self._jobs[key] = job_id
        logger.debug("Timer %s armed for %s as %s", key, run_at.isoformat(), job_id)

    def disarm(self, key: str) -> bool:
        with self._lock:
            job_id = self._jobs.pop(key, None)
            if job_id is None:
                return False
            return self.scheduler.remove_job(job_id)

    def job_id(self, key: str) -> str | None:
        """APScheduler job id of an armed timer."""
        with self._lock:
            return self._jobs.get(key)

    def armed_keys(self) -> set[str]:
        with self._lock:
            return set(self._jobs)
