from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo


class Clock:
    """The server's notion of "now". Clients never supply the date."""

    def __init__(self, tz: tzinfo) -> None:
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(microsecond=0)

    def today(self) -> date:
        return self.now().date()


class SteppedClock(Clock):
    """A clock that only moves when told to (simulation and tests)."""

    def __init__(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("SteppedClock needs a timezone-aware datetime")
        super().__init__(moment.tzinfo)
        self._moment = moment.replace(microsecond=0)

    def now(self) -> datetime:
        return self._moment

    def advance(self, **delta: float) -> datetime:
        self._moment = self._moment + timedelta(**delta)
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = moment.replace(microsecond=0)
