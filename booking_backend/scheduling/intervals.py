"""Half-open interval arithmetic and time-zone helpers.

Every absolute timestamp handled by the engine is a naive datetime in UTC.
Provider templates are wall-clock times that only become absolute once they
are placed on a calendar day in the provider's time zone.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from booking_backend.core.errors import InvalidInterval


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidInterval(self.start, self.end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def pad(interval: Interval, minutes: int) -> Interval:
    padding = timedelta(minutes=minutes)
    return Interval(interval.start - padding, interval.end + padding)


def union(intervals: Iterable[Interval]) -> list[Interval]:
    """Merge overlapping or touching intervals into a minimal sorted list."""
    merged: list[Interval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = Interval(merged[-1].start, interval.end)
        else:
            merged.append(interval)
    return merged


def subtract(base: Interval, holes: Iterable[Interval]) -> list[Interval]:
    free: list[Interval] = []
    cursor = base.start
    for hole in union(holes):
        if hole.end <= cursor or not overlaps(base, hole):
            continue
        if hole.start > cursor:
            free.append(Interval(cursor, hole.start))
        cursor = max(cursor, hole.end)
        if cursor >= base.end:
            break
    if cursor < base.end:
        free.append(Interval(cursor, base.end))
    return free


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime, tz_name: str) -> datetime:
    """Aware local datetime for a naive UTC timestamp."""
    return value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))


def localize(day: date, wall_time: time, tz_name: str) -> datetime:
    """Naive UTC timestamp of a wall-clock time on a local calendar day."""
    local = datetime.combine(day, wall_time, tzinfo=ZoneInfo(tz_name))
    return to_utc_naive(local)


def local_date(value: datetime, tz_name: str) -> date:
    return to_local(value, tz_name).date()


def local_day_bounds(day: date, tz_name: str) -> Interval:
    """UTC interval covering one local calendar day."""
    return Interval(localize(day, time.min, tz_name), localize(day + timedelta(days=1), time.min, tz_name))


def day_of_week(day: date) -> int:
    # 0 = Sunday, matching the stored weekly schedule format.
    return (day.weekday() + 1) % 7


def round_up(value: datetime, minutes: int) -> datetime:
    current = value.replace(second=0, microsecond=0)
    if current < value:
        current += timedelta(minutes=1)

    remainder = (current.hour * 60 + current.minute) % minutes
    if remainder:
        current += timedelta(minutes=minutes - remainder)

    return current


def round_up_local(value: datetime, minutes: int, tz_name: str) -> datetime:
    """Round a naive UTC timestamp up to the provider's wall-clock grid."""
    offset = to_local(value, tz_name).utcoffset()
    return round_up(value + offset, minutes) - offset
