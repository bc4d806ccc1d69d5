"""
Injectable time source.

Services read the current instant from a ``Clock`` instead of calling
``datetime.now()``; return deadlines and the 72 hour cancel window are
measured against it.  All values are timezone-aware UTC.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock:
    """
    Frozen clock for tests.  Time moves only through ``advance`` or
    ``set_time``.
    """

    _EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self._EPOCH

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        self._current += timedelta(hours=hours)
