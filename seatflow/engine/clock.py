"""
Clocks drive durable timers.

SystemClock fires timers on background threads in real time.
ManualClock only fires timers when advance() is called, which makes
timeout races deterministic in tests.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


class TimerHandle(ABC):
    """Handle to an armed timer."""

    @abstractmethod
    def cancel(self) -> None:
        pass


class Clock(ABC):
    """Time source and timer scheduler."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        pass

    @abstractmethod
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_seconds."""
        pass


class _ThreadTimerHandle(TimerHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class SystemClock(Clock):
    """Wall clock; timers run on daemon threads."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(delay_seconds, 0.0), callback)
        timer.daemon = True
        timer.start()
        return _ThreadTimerHandle(timer)


@dataclass(eq=False)
class _ManualTimer(TimerHandle):
    fire_at: datetime
    callback: Callable[[], None]
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Timers whose fire time is reached by advance() run synchronously on
    the calling thread, earliest first.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._timers: list[_ManualTimer] = []
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        with self._lock:
            timer = _ManualTimer(self._now + timedelta(seconds=max(delay_seconds, 0.0)), callback)
            self._timers.append(timer)
            return timer

    @property
    def pending(self) -> int:
        """Number of armed, not yet fired, not cancelled timers."""
        with self._lock:
            return sum(1 for t in self._timers if not t.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move time forward and fire due timers.

        Returns:
            Number of timers fired
        """
        with self._lock:
            self._now += timedelta(seconds=seconds)
            due = sorted(
                (t for t in self._timers if not t.cancelled and t.fire_at <= self._now),
                key=lambda t: t.fire_at,
            )
            self._timers = [t for t in self._timers if t not in due and not t.cancelled]

        for timer in due:
            timer.callback()
        return len(due)
