"""Scheduler module for periodic sweeps and reminder timers.

This package provides:
- APScheduler-based task scheduling
- One-shot timer backends for reminders
"""

from .scheduler import TaskScheduler
from .timers import SchedulerTimerBackend, TimerBackend

__all__ = [
    "SchedulerTimerBackend",
    "TaskScheduler",
    "TimerBackend",
]
