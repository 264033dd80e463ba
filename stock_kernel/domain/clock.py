"""
Injectable time source.

Services take a ``Clock`` instead of reading the wall clock: document codes
embed the clock's date and every approval, dispatch and cancellation is
stamped with its time, so tests pin both with ``DeterministicClock``.
``SystemClock`` is the only place the kernel reads real time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Timezone-aware UTC time for stamping documents."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        """Business date used in document codes (UTC)."""
        return self.now().date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Fixed time for tests; moves only when ``advance`` is called.

    Defaults to 2024-01-15 09:00 UTC, so the first import document of a
    test is ``PNK-20240115-001``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def advance(self, *, days: int = 0, seconds: int = 0) -> datetime:
        """Move forward and return the new time."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current
