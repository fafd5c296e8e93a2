from datetime import date, datetime, time

import pytest

from booking_backend.core.errors import InvalidTemplate
from booking_backend.models.availability import WorkInterval
from booking_backend.scheduling.intervals import Interval
from booking_backend.scheduling.templates import (
    AvailabilityTemplateData,
    TimeRange,
    get_template,
    replace_template,
    validate_template,
    work_intervals_for_day,
    working_span,
)

from conftest import MONDAY, weekday_template


def test_get_template_returns_provider_defaults_when_none_stored(db, provider) -> None:
    template = get_template(db, provider.id)

    assert template.buffer_minutes == 15
    assert template.max_daily_appointments == 8
    assert template.advance_booking_days == 60
    assert template.min_notice_hours == 24
    assert template.weekly_schedule[0] == []
    assert template.weekly_schedule[1] == [TimeRange(start_time=time(9, 0), end_time=time(17, 0))]
    assert template.weekly_schedule[5] == [TimeRange(start_time=time(9, 0), end_time=time(14, 0))]
    assert template.weekly_schedule[6] == []


def test_replace_template_round_trips_through_storage(db, provider) -> None:
    saved = replace_template(db, provider.id, weekday_template(buffer_minutes=30, timezone='Europe/London'))

    assert saved.buffer_minutes == 30
    assert saved.timezone == 'Europe/London'
    assert get_template(db, provider.id) == saved


def test_replace_template_swaps_work_intervals_wholesale(db, provider) -> None:
    replace_template(db, provider.id, weekday_template())
    replacement = weekday_template(weekly_schedule={
        2: [
            TimeRange(start_time=time(8, 0), end_time=time(12, 0)),
            TimeRange(start_time=time(13, 0), end_time=time(18, 0)),
        ],
    })

    replace_template(db, provider.id, replacement)

    rows = db.query(WorkInterval).all()
    assert {(row.day_of_week, row.start_time) for row in rows} == {(2, time(8, 0)), (2, time(13, 0))}


def test_validate_template_reports_every_violation() -> None:
    template = AvailabilityTemplateData(
        weekly_schedule={
            1: [
                TimeRange(start_time=time(9, 0), end_time=time(12, 0)),
                TimeRange(start_time=time(11, 0), end_time=time(13, 0)),
            ],
            3: [TimeRange(start_time=time(17, 0), end_time=time(9, 0))],
            7: [],
        },
        buffer_minutes=200,
        max_daily_appointments=0,
        timezone='Mars/Olympus_Mons',
    )

    fields = {violation['field'] for violation in validate_template(template)}

    assert fields == {
        'weekly_schedule.1[1]',
        'weekly_schedule.3[0]',
        'weekly_schedule.7',
        'buffer_minutes',
        'max_daily_appointments',
        'timezone',
    }


def test_validate_template_rejects_unsorted_intervals() -> None:
    template = weekday_template(weekly_schedule={
        1: [
            TimeRange(start_time=time(13, 0), end_time=time(15, 0)),
            TimeRange(start_time=time(9, 0), end_time=time(10, 0)),
        ],
    })

    violations = validate_template(template)

    assert violations == [{'field': 'weekly_schedule.1[1]', 'message': 'Intervals must be sorted by start time.'}]


def test_invalid_template_leaves_stored_template_untouched(db, provider) -> None:
    replace_template(db, provider.id, weekday_template())

    with pytest.raises(InvalidTemplate) as exception_info:
        replace_template(db, provider.id, weekday_template(min_notice_hours=500))

    assert exception_info.value.violations[0]['field'] == 'min_notice_hours'
    assert get_template(db, provider.id).min_notice_hours == 24


def test_work_intervals_for_day_are_placed_in_provider_time_zone() -> None:
    template = weekday_template(timezone='Asia/Jerusalem')

    intervals = work_intervals_for_day(template, MONDAY)

    assert intervals == [Interval(datetime(2030, 1, 7, 7, 0), datetime(2030, 1, 7, 15, 0))]


def test_closed_day_has_no_working_span() -> None:
    template = weekday_template()

    assert work_intervals_for_day(template, date(2030, 1, 6)) == []
    assert working_span(template, date(2030, 1, 6)) is None
    assert working_span(template, MONDAY) == Interval(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 17, 0))
