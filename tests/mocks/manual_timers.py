"""Deterministic clock and timer backend for reminder tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ManualTimerBackend:
    """Timer backend whose timers fire only when the test advances the clock.

    Timers due at the same instant fire in arming order.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self._timers: dict[str, tuple[datetime, int, Callable[[], None]]] = {}
        self._seq = 0
        self.fired: list[str] = []

    def arm(self, key: str, run_at: datetime, callback: Callable[[], None]) -> None:
        self._seq += 1
        self._timers[key] = (run_at, self._seq, callback)

    def disarm(self, key: str) -> bool:
        return self._timers.pop(key, None) is not None

    @property
    def armed(self) -> set[str]:
        return set(self._timers)

    def run_due(self) -> int:
        """Fire every timer due at or before the current time."""
        count = 0
        while True:
            due = [
                (run_at, seq, key)
                for key, (run_at, seq, _) in self._timers.items()
                if run_at <= self.clock.now
            ]
            if not due:
                return count
            _, _, key = min(due)
            _, _, callback = self._timers.pop(key)
            self.fired.append(key)
            callback()
            count += 1

    def advance(self, **kwargs: float) -> int:
        """Move the clock forward, firing timers at their scheduled instants."""
        target = self.clock.now + timedelta(**kwargs)
        count = 0
        while True:
            pending = [
                (run_at, seq, key)
                for key, (run_at, seq, _) in self._timers.items()
                if run_at <= target
            ]
            if not pending:
                break
            run_at, _, key = min(pending)
            self.clock.now = max(self.clock.now, run_at)
            _, _, callback = self._timers.pop(key)
            self.fired.append(key)
            callback()
            count += 1
        self.clock.now = target
        return count
