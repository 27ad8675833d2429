"""
Clock -- injectable source of time for the control plane.

Responsibility:
    Managers never call ``datetime.now()`` or ``date.today()``.  They ask a
    Clock for the instant (``now``) or the ledger calendar day (``today``),
    both in UTC.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads the wall
    clock.

Audit relevance:
    closed_at, locked_at, released_at, every settlement state timestamp and
    every ``next_retry_at`` comes from the injected clock, so a test can pin
    the exact retry schedule a failure produces and whether a lock release
    counts as early.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

LEDGER_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """
    Abstract clock.

    Guarantees:
        - ``now()`` is timezone-aware UTC.
        - ``today()`` is the UTC calendar date of ``now()``; it decides
          which accounting period and which lock range a moment falls in.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    Time stands still at ``start`` (default 2024-01-01T12:00:00Z) until moved
    with ``advance()`` or ``set_time()``.
    """

    def __init__(self, start: datetime | None = None):
        self._current = _require_aware(start or LEDGER_EPOCH)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = _require_aware(time)

    def advance(self, seconds: int = 0, *, minutes: int = 0, days: int = 0) -> datetime:
        """Move forward and return the new instant."""
        self._current += timedelta(days=days, minutes=minutes, seconds=seconds)
        return self._current


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"Clock time must be timezone-aware: {value!r}")
    return value.astimezone(timezone.utc)
