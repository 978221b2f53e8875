"""
Slot generation

Derives the candidate time windows of a clinic's operating day. The result
is a pure function of the operating hours, the slot duration and the day.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Union

import pytz


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def resolve_tz(tz: Union[str, pytz.BaseTzInfo, None]) -> pytz.BaseTzInfo:
    if tz is None:
        return pytz.UTC
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def day_bounds(day: date, tz: Union[str, pytz.BaseTzInfo, None] = None) -> TimeWindow:
    """Midnight-to-midnight window of ``day`` in ``tz``."""
    zone = resolve_tz(tz)
    start = zone.localize(datetime.combine(day, time.min))
    end = zone.localize(datetime.combine(day + timedelta(days=1), time.min))
    return TimeWindow(start=start, end=end)


def generate_slots(
    open_hour: Optional[int],
    close_hour: Optional[int],
    slot_minutes: int,
    day: date,
    tz: Union[str, pytz.BaseTzInfo, None] = None,
) -> List[TimeWindow]:
    """
    Contiguous, non-overlapping [start, end) windows covering the operating day.

    Args:
        open_hour: first hour of the operating day (0-23), or None when closed
        close_hour: hour the operating day ends (1-24), or None when closed
        slot_minutes: fixed slot duration
        day: the reference date
        tz: timezone name or pytz zone the hours are expressed in

    Returns:
        list[TimeWindow] ordered by start. A trailing window that would run
        past ``close_hour`` is dropped. A day with no operating hours yields
        an empty list.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    if open_hour is None or close_hour is None or open_hour >= close_hour:
        return []

    zone = resolve_tz(tz)
    midnight = datetime.combine(day, time.min)
    day_open = zone.localize(midnight + timedelta(hours=open_hour))
    day_close = zone.localize(midnight + timedelta(hours=close_hour))
    step = timedelta(minutes=slot_minutes)

    windows: List[TimeWindow] = []
    current = day_open
    while current + step <= day_close:
        windows.append(TimeWindow(start=current, end=current + step))
        current = current + step
    return windows
