"""Mock objects for testing."""

from .manual_timers import ManualClock, ManualTimerBackend

__all__ = ["ManualClock", "ManualTimerBackend"]
