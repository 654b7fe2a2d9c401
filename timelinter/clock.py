from datetime import UTC, datetime, timedelta
from typing import Protocol

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MS = timedelta(milliseconds=1)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to. Used by tests and replays."""

    def __init__(self, start: datetime | None = None):
        self._now = start or EPOCH

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now


def to_millis(instant: datetime) -> int:
    return (instant - EPOCH) // _MS


def from_millis(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def duration_to_millis(duration: timedelta) -> int:
    return duration // _MS


def duration_from_millis(ms: int) -> timedelta:
    return timedelta(milliseconds=ms)
