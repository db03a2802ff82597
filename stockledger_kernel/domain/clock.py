"""
Injectable time source.

Services stamp ``acquired_at`` and ``created_at`` through a Clock so that FIFO
ordering is reproducible in tests. Nothing outside this module calls
``datetime.now()``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Controlled clock for tests.

    ``now()`` is stable between calls. ``advance()`` moves it forward and
    ``tick()`` advances one second and returns the new time, which is the
    usual way to give successive cost layers distinct acquisition times.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = start or self.DEFAULT_START
        if self._current.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware start")

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> None:
        self._current = self._current + timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("set_time requires a timezone-aware datetime")
        self._current = moment
