from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from booking_backend.core.errors import InvalidRecurrence, RecurrenceTooLong
from booking_backend.scheduling.recurrence import Frequency, expand_recurrence, parse_frequency


def test_weekly_expansion_stops_before_end_date() -> None:
    occurrences = expand_recurrence(datetime(2030, 1, 7, 10, 0), 'weekly', datetime(2030, 1, 28, 10, 0))

    assert occurrences == [
        datetime(2030, 1, 7, 10, 0),
        datetime(2030, 1, 14, 10, 0),
        datetime(2030, 1, 21, 10, 0),
    ]


def test_biweekly_and_daily_steps() -> None:
    assert expand_recurrence(datetime(2030, 1, 7, 10, 0), Frequency.BIWEEKLY, datetime(2030, 2, 5)) == [
        datetime(2030, 1, 7, 10, 0),
        datetime(2030, 1, 21, 10, 0),
        datetime(2030, 2, 4, 10, 0),
    ]
    assert len(expand_recurrence(datetime(2030, 1, 7, 10, 0), Frequency.DAILY, datetime(2030, 1, 14))) == 7


def test_monthly_from_the_31st_clamps_and_recovers() -> None:
    occurrences = expand_recurrence(datetime(2030, 1, 31, 10, 0), 'monthly', datetime(2030, 6, 1))

    assert occurrences == [
        datetime(2030, 1, 31, 10, 0),
        datetime(2030, 2, 28, 10, 0),
        datetime(2030, 3, 31, 10, 0),
        datetime(2030, 4, 30, 10, 0),
        datetime(2030, 5, 31, 10, 0),
    ]


def test_expansion_is_idempotent() -> None:
    first = expand_recurrence(datetime(2030, 1, 31, 10, 0), 'monthly', datetime(2031, 1, 1))
    second = expand_recurrence(datetime(2030, 1, 31, 10, 0), 'monthly', datetime(2031, 1, 1))

    assert first == second


def test_weekly_expansion_keeps_wall_clock_across_daylight_saving() -> None:
    new_york = ZoneInfo('America/New_York')
    start = datetime(2030, 3, 4, 10, 0, tzinfo=new_york)

    occurrences = expand_recurrence(start, 'weekly', datetime(2030, 3, 18, tzinfo=new_york))

    assert [occurrence.hour for occurrence in occurrences] == [10, 10]
    assert occurrences[0].utcoffset() != occurrences[1].utcoffset()


def test_end_date_not_after_start_is_rejected() -> None:
    with pytest.raises(InvalidRecurrence):
        expand_recurrence(datetime(2030, 1, 7, 10, 0), 'weekly', datetime(2030, 1, 7, 10, 0))


def test_unknown_frequency_is_rejected() -> None:
    with pytest.raises(InvalidRecurrence):
        parse_frequency('fortnightly-ish')


def test_expansion_over_the_cap_raises() -> None:
    with pytest.raises(RecurrenceTooLong) as exception_info:
        expand_recurrence(datetime(2030, 1, 1), 'daily', datetime(2032, 1, 1), limit=500)

    assert exception_info.value.limit == 500


def test_expansion_exactly_at_the_cap_is_allowed() -> None:
    occurrences = expand_recurrence(datetime(2030, 1, 1), 'daily', datetime(2030, 1, 11), limit=10)

    assert len(occurrences) == 10
