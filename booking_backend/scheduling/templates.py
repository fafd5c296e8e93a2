"""Availability template store.

A provider owns exactly one weekly template. It is always replaced as a whole:
the new template is validated up front and written in a single transaction,
so readers never observe a half-applied schedule.
"""

import logging
from datetime import date, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import InvalidTemplate
from booking_backend.models.availability import AvailabilityTemplate, WorkInterval
from booking_backend.scheduling.intervals import Interval, day_of_week, localize, union

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = range(7)
POLICY_BOUNDS = {
    'buffer_minutes': (0, 120),
    'max_daily_appointments': (1, 20),
    'advance_booking_days': (1, 365),
    'min_notice_hours': (0, 168),
}


class TimeRange(BaseModel):
    start_time: time
    end_time: time


def default_weekly_schedule() -> dict[int, list[TimeRange]]:
    full_day = [TimeRange(start_time=time(9, 0), end_time=time(17, 0))]
    return {
        0: [],
        1: list(full_day),
        2: list(full_day),
        3: list(full_day),
        4: list(full_day),
        5: [TimeRange(start_time=time(9, 0), end_time=time(14, 0))],
        6: [],
    }


class AvailabilityTemplateData(BaseModel):
    weekly_schedule: dict[int, list[TimeRange]] = Field(default_factory=default_weekly_schedule)
    buffer_minutes: int = config.DEFAULT_BUFFER_MINUTES
    max_daily_appointments: int = config.DEFAULT_MAX_DAILY_APPOINTMENTS
    advance_booking_days: int = config.DEFAULT_ADVANCE_BOOKING_DAYS
    min_notice_hours: int = config.DEFAULT_MIN_NOTICE_HOURS
    timezone: str = config.DEFAULT_TIMEZONE

    def ranges_for(self, day: date) -> list[TimeRange]:
        return self.weekly_schedule.get(day_of_week(day), [])


def validate_template(template: AvailabilityTemplateData) -> list[dict[str, str]]:
    """Return every violation in the template; an empty list means it is valid."""
    violations: list[dict[str, str]] = []

    for day, ranges in sorted(template.weekly_schedule.items()):
        field = f'weekly_schedule.{day}'
        if day not in DAYS_OF_WEEK:
            violations.append({'field': field, 'message': 'Day of week must be between 0 (Sunday) and 6 (Saturday).'})
            continue

        for index, time_range in enumerate(ranges):
            if time_range.end_time <= time_range.start_time:
                violations.append({
                    'field': f'{field}[{index}]',
                    'message': f'End time {time_range.end_time:%H:%M} must be after start time {time_range.start_time:%H:%M}.',
                })

            if index == 0:
                continue

            previous = ranges[index - 1]
            if time_range.start_time < previous.start_time:
                violations.append({'field': f'{field}[{index}]', 'message': 'Intervals must be sorted by start time.'})
            elif time_range.start_time < previous.end_time:
                violations.append({
                    'field': f'{field}[{index}]',
                    'message': f'Interval overlaps the previous interval ending at {previous.end_time:%H:%M}.',
                })

    for field, (lower, upper) in POLICY_BOUNDS.items():
        value = getattr(template, field)
        if not lower <= value <= upper:
            violations.append({'field': field, 'message': f'Must be between {lower} and {upper}.'})

    try:
        ZoneInfo(template.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        violations.append({'field': 'timezone', 'message': f'Unknown time zone {template.timezone!r}.'})

    return violations


def get_template(db: Session, provider_id: int) -> AvailabilityTemplateData:
    row = db.query(AvailabilityTemplate).filter(AvailabilityTemplate.provider_id == provider_id).first()
    if row is None:
        return AvailabilityTemplateData()

    work_intervals = db.query(WorkInterval).filter(
        WorkInterval.template_id == row.id,
    ).order_by(WorkInterval.day_of_week.asc(), WorkInterval.start_time.asc()).all()

    weekly_schedule: dict[int, list[TimeRange]] = {day: [] for day in DAYS_OF_WEEK}
    for work_interval in work_intervals:
        weekly_schedule[work_interval.day_of_week].append(
            TimeRange(start_time=work_interval.start_time, end_time=work_interval.end_time)
        )

    return AvailabilityTemplateData(
        weekly_schedule=weekly_schedule,
        buffer_minutes=row.buffer_minutes,
        max_daily_appointments=row.max_daily_appointments,
        advance_booking_days=row.advance_booking_days,
        min_notice_hours=row.min_notice_hours,
        timezone=row.timezone,
    )


def replace_template(db: Session, provider_id: int, template: AvailabilityTemplateData) -> AvailabilityTemplateData:
    violations = validate_template(template)
    if violations:
        raise InvalidTemplate(violations)

    try:
        row = db.query(AvailabilityTemplate).filter(AvailabilityTemplate.provider_id == provider_id).first()
        if row is None:
            row = AvailabilityTemplate(provider_id=provider_id)
            db.add(row)

        row.buffer_minutes = template.buffer_minutes
        row.max_daily_appointments = template.max_daily_appointments
        row.advance_booking_days = template.advance_booking_days
        row.min_notice_hours = template.min_notice_hours
        row.timezone = template.timezone
        db.flush()

        db.query(WorkInterval).filter(WorkInterval.template_id == row.id).delete(synchronize_session=False)
        for day, ranges in sorted(template.weekly_schedule.items()):
            for time_range in ranges:
                db.add(WorkInterval(
                    template_id=row.id,
                    day_of_week=day,
                    start_time=time_range.start_time,
                    end_time=time_range.end_time,
                ))

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Replaced availability template for provider %s', provider_id)
    return get_template(db, provider_id)


def work_intervals_for_day(template: AvailabilityTemplateData, day: date) -> list[Interval]:
    return union(
        Interval(
            localize(day, time_range.start_time, template.timezone),
            localize(day, time_range.end_time, template.timezone),
        )
        for time_range in template.ranges_for(day)
    )


def working_span(template: AvailabilityTemplateData, day: date) -> Interval | None:
    """From the first opening to the last closing of a local day, if it has any hours."""
    work_intervals = work_intervals_for_day(template, day)
    if not work_intervals:
        return None
    return Interval(work_intervals[0].start, work_intervals[-1].end)
