"""Conflict validator: the single authority on whether an appointment may exist.

Checks run in a fixed order and stop at the first failing category, but
every violation inside that category is reported so the caller can show the
exact intervals that are in the way.
"""

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel
from sqlalchemy.orm import Session

from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.models.blocked_interval import BlockedInterval
from booking_backend.scheduling.intervals import (
    Interval,
    contains,
    local_date,
    local_day_bounds,
    pad,
    to_utc_naive,
    utc_now,
)
from booking_backend.scheduling.templates import AvailabilityTemplateData, get_template, work_intervals_for_day


class ConstraintKind(str, Enum):
    STRUCTURE = 'structure'
    MIN_NOTICE = 'min_notice'
    ADVANCE_HORIZON = 'advance_horizon'
    DAILY_CAP = 'daily_cap'
    WORK_HOURS = 'work_hours'
    BLOCKED = 'blocked'
    OVERLAP = 'overlap'


class Conflict(BaseModel):
    kind: ConstraintKind
    message: str
    start: datetime | None = None
    end: datetime | None = None
    reference_id: int | None = None


class ValidationResult(BaseModel):
    ok: bool
    start: datetime
    end: datetime
    conflicts: list[Conflict] = []
    reasons: list[str] = []


def _passed(start: datetime, end: datetime) -> ValidationResult:
    return ValidationResult(ok=True, start=start, end=end)


def _failed(start: datetime, end: datetime, conflicts: list[Conflict]) -> ValidationResult:
    reasons = list(dict.fromkeys(conflict.message for conflict in conflicts))
    return ValidationResult(ok=False, start=start, end=end, conflicts=conflicts, reasons=reasons)


def active_appointments_query(db: Session, provider_id: int, exclude_appointment_id: int | None = None):
    query = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query


def count_appointments_on_day(
    db: Session,
    provider_id: int,
    candidate_start: datetime,
    timezone_name: str,
    exclude_appointment_id: int | None = None,
) -> int:
    day = local_day_bounds(local_date(candidate_start, timezone_name), timezone_name)
    return active_appointments_query(db, provider_id, exclude_appointment_id).filter(
        Appointment.start_time >= day.start,
        Appointment.start_time < day.end,
    ).count()


def validate_candidate(
    db: Session,
    provider_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
    now: datetime | None = None,
    enforce_booking_window: bool = True,
    template: AvailabilityTemplateData | None = None,
) -> ValidationResult:
    start = to_utc_naive(start)
    end = to_utc_naive(end)
    now = to_utc_naive(now) if now is not None else utc_now()

    if end <= start:
        return _failed(start, end, [
            Conflict(kind=ConstraintKind.STRUCTURE, message='Appointment end must be after its start.', start=start, end=end),
        ])

    candidate = Interval(start, end)
    template = template or get_template(db, provider_id)

    if enforce_booking_window:
        earliest = now + timedelta(hours=template.min_notice_hours)
        if candidate.start < earliest:
            return _failed(start, end, [Conflict(
                kind=ConstraintKind.MIN_NOTICE,
                message=f'Appointments must be booked at least {template.min_notice_hours} hours in advance.',
                start=start,
                end=end,
            )])

        latest = now + timedelta(days=template.advance_booking_days)
        if candidate.start > latest:
            return _failed(start, end, [Conflict(
                kind=ConstraintKind.ADVANCE_HORIZON,
                message=f'Appointments can only be booked up to {template.advance_booking_days} days ahead.',
                start=start,
                end=end,
            )])

    booked_that_day = count_appointments_on_day(db, provider_id, start, template.timezone, exclude_appointment_id)
    if booked_that_day >= template.max_daily_appointments:
        return _failed(start, end, [Conflict(
            kind=ConstraintKind.DAILY_CAP,
            message=f'The daily limit of {template.max_daily_appointments} appointments has been reached.',
            start=start,
            end=end,
        )])

    work_intervals = work_intervals_for_day(template, local_date(start, template.timezone))
    if not any(contains(work_interval, candidate) for work_interval in work_intervals):
        return _failed(start, end, [Conflict(
            kind=ConstraintKind.WORK_HOURS,
            message='Appointment is outside working hours.',
            start=start,
            end=end,
        )])

    blocked_intervals = db.query(BlockedInterval).filter(
        BlockedInterval.provider_id == provider_id,
        BlockedInterval.start_time < candidate.end,
        BlockedInterval.end_time > candidate.start,
    ).order_by(BlockedInterval.start_time.asc()).all()
    if blocked_intervals:
        return _failed(start, end, [
            Conflict(
                kind=ConstraintKind.BLOCKED,
                message=f'This time is blocked ({blocked.reason}).',
                start=blocked.start_time,
                end=blocked.end_time,
                reference_id=blocked.id,
            )
            for blocked in blocked_intervals
        ])

    padded = pad(candidate, template.buffer_minutes)
    overlapping = active_appointments_query(db, provider_id, exclude_appointment_id).filter(
        Appointment.start_time < padded.end,
        Appointment.end_time > padded.start,
    ).order_by(Appointment.start_time.asc()).all()
    if overlapping:
        return _failed(start, end, [
            Conflict(
                kind=ConstraintKind.OVERLAP,
                message=(
                    'This time overlaps another appointment'
                    + (f' or its {template.buffer_minutes}-minute buffer.' if template.buffer_minutes else '.')
                ),
                start=appointment.start_time,
                end=appointment.end_time,
                reference_id=appointment.id,
            )
            for appointment in overlapping
        ])

    return _passed(start, end)


def validate_occurrences(
    db: Session,
    provider_id: int,
    intervals: list[Interval],
    exclude_appointment_id: int | None = None,
    now: datetime | None = None,
    enforce_booking_window: bool = True,
) -> list[ValidationResult]:
    """Validate each occurrence on its own; the caller decides what a single failure means."""
    template = get_template(db, provider_id)
    return [
        validate_candidate(
            db,
            provider_id,
            interval.start,
            interval.end,
            exclude_appointment_id=exclude_appointment_id,
            now=now,
            enforce_booking_window=enforce_booking_window,
            template=template,
        )
        for interval in intervals
    ]
