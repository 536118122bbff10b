from datetime import date, datetime, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock pinned to a given instant; tests move it with `advance`/`set`."""

    def __init__(self, instant: Optional[datetime] = None):
        self._instant = instant or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def today(self) -> date:
        return self._instant.date()

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, delta) -> None:
        self._instant = self._instant + delta


system_clock = SystemClock()


def get_clock() -> Clock:
    return system_clock
