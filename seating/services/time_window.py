from dataclasses import dataclass
from datetime import time

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    """Minutes since midnight, seconds dropped"""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Wall-clock time for a minute count; wraps past midnight"""
    minutes %= MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def format_time_am_pm(value: time | None) -> str:
    if value is None:
        return "No time specified"
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


@dataclass(frozen=True)
class TimeWindow:
    """
    Half-open interval [start, start + duration) within one service day.

    ``end_time`` wraps past midnight for display, but overlap checks use the
    unwrapped minute values, so a window never spills into the next day.
    """
    start: time
    duration: int

    @classmethod
    def between(cls, start: time, end: time) -> "TimeWindow":
        return cls(start, to_minutes(end) - to_minutes(start))

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration

    @property
    def end_time(self) -> time:
        return from_minutes(self.end_minutes)

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def contains(self, instant: time) -> bool:
        return self.start_minutes <= to_minutes(instant) < self.end_minutes

    def __str__(self):
        return f"{format_time_am_pm(self.start)} - {format_time_am_pm(self.end_time)}"


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    return a.overlaps(b)


def contains(window: TimeWindow, instant: time) -> bool:
    return window.contains(instant)
