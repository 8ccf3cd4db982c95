"""
Triggers

Compute the next fire time of a job after a given moment.
"""

from datetime import datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo


class IntervalTrigger:
    """Fires every `seconds`, starting one interval after the first check."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.interval = timedelta(seconds=seconds)

    def next_fire(self, after: datetime) -> datetime:
        return after + self.interval

    def __repr__(self) -> str:
        return f"IntervalTrigger(every {self.interval.total_seconds()}s)"


class DailyTrigger:
    """
    Fires at a wall-clock time on selected weekdays in a time zone.

    Usage:
        trigger = DailyTrigger(time(15, 25), "Asia/Kolkata", weekdays=[0, 1, 2, 3, 4])
        trigger.next_fire(now)
    """

    def __init__(self, at: time, tz: str, weekdays: Optional[Iterable[int]] = None):
        self.at = at
        self.tz = ZoneInfo(tz)
        self.weekdays = frozenset(weekdays if weekdays is not None else range(7))
        if not self.weekdays:
            raise ValueError("weekdays must not be empty")

    @classmethod
    def from_string(cls, hhmm: str, tz: str, weekdays: Optional[Iterable[int]] = None) -> "DailyTrigger":
        """Build from an "HH:MM" string."""
        hour, minute = hhmm.split(":")
        return cls(time(int(hour), int(minute)), tz, weekdays)

    def next_fire(self, after: datetime) -> datetime:
        """First matching moment strictly after `after` (returned in `after`'s zone)."""
        local = after.astimezone(self.tz)
        day = local.date()
        for _ in range(8):
            candidate = datetime.combine(day, self.at, tzinfo=self.tz)
            if candidate > local and candidate.weekday() in self.weekdays:
                return candidate.astimezone(after.tzinfo)
            day += timedelta(days=1)
        raise RuntimeError("no fire time within a week")

    def __repr__(self) -> str:
        return f"DailyTrigger({self.at.strftime('%H:%M')} {self.tz.key} days={sorted(self.weekdays)})"
