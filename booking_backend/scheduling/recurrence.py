"""Recurrence expansion.

``iter_occurrences`` is the lazy generator; ``expand_recurrence`` is what call
sites use, because it turns the two bad-input cases into errors instead of an
empty or silently truncated list.
"""

from datetime import datetime
from enum import Enum
from itertools import islice
from typing import Iterator

from dateutil.relativedelta import relativedelta

from booking_backend.core import config
from booking_backend.core.errors import InvalidRecurrence, RecurrenceTooLong


class Frequency(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'


FIXED_STEPS = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.BIWEEKLY: relativedelta(weeks=2),
}


def parse_frequency(value: str | Frequency) -> Frequency:
    try:
        return Frequency(value)
    except ValueError as exc:
        raise InvalidRecurrence(f'Unsupported recurrence frequency {value!r}.') from exc


def occurrence_offset(frequency: Frequency, index: int) -> relativedelta:
    # Monthly offsets are taken from the first occurrence so a series anchored
    # on the 31st returns to the 31st after a short month.
    if frequency is Frequency.MONTHLY:
        return relativedelta(months=index)
    return FIXED_STEPS[frequency] * index


def iter_occurrences(start: datetime, frequency: str | Frequency, end_date: datetime) -> Iterator[datetime]:
    frequency = parse_frequency(frequency)
    index = 0
    while True:
        occurrence = start + occurrence_offset(frequency, index)
        if occurrence >= end_date:
            return
        yield occurrence
        index += 1


def expand_recurrence(
    start: datetime,
    frequency: str | Frequency,
    end_date: datetime,
    limit: int | None = None,
) -> list[datetime]:
    limit = limit or config.RECURRENCE_MAX_OCCURRENCES

    if end_date <= start:
        raise InvalidRecurrence('Recurrence end date must be after the first occurrence.')

    occurrences = list(islice(iter_occurrences(start, frequency, end_date), limit + 1))
    if len(occurrences) > limit:
        raise RecurrenceTooLong(limit)

    return occurrences
