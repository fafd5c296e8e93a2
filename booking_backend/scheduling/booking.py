"""Booking operations: request, reschedule, status changes.

Every write that places an appointment on the calendar goes through
``BookingCoordinator.reserve_and_commit``; status changes that only free
time (cancel, complete, no-show) commit directly and announce the change.
"""

import logging
import uuid
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import InvalidStatusTransition, NotFound
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.scheduling.coordinator import BookingCoordinator
from booking_backend.scheduling.intervals import Interval, to_local, to_utc_naive, utc_now
from booking_backend.scheduling.recurrence import Frequency, expand_recurrence
from booking_backend.scheduling.templates import get_template

logger = logging.getLogger(__name__)

INITIAL_STATUSES = {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}
ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    },
}


class RecurrenceRequest(BaseModel):
    frequency: Frequency
    end_date: datetime


def occurrence_intervals(
    start: datetime,
    end: datetime,
    recurrence: RecurrenceRequest | None,
    timezone_name: str,
) -> list[Interval]:
    """Concrete UTC intervals for a booking request.

    Series are expanded on the provider's wall clock so that a weekly 10:00
    appointment stays at 10:00 local time across daylight-saving changes.
    """
    first = Interval(to_utc_naive(start), to_utc_naive(end))
    if recurrence is None:
        return [first]

    occurrences = expand_recurrence(
        to_local(first.start, timezone_name),
        recurrence.frequency,
        to_local(to_utc_naive(recurrence.end_date), timezone_name),
    )
    return [
        Interval(to_utc_naive(occurrence), to_utc_naive(occurrence) + first.duration)
        for occurrence in occurrences
    ]


def resolve_initial_status(initial_status: AppointmentStatus | str | None) -> AppointmentStatus:
    if initial_status is None:
        return AppointmentStatus.CONFIRMED if config.AUTO_CONFIRM_BOOKINGS else AppointmentStatus.PENDING

    status = AppointmentStatus(initial_status)
    if status not in INITIAL_STATUSES:
        raise InvalidStatusTransition('new', status.value)
    return status


def request_booking(
    db: Session,
    coordinator: BookingCoordinator,
    provider_id: int,
    client_id: int | None,
    start: datetime,
    end: datetime,
    recurrence: RecurrenceRequest | None = None,
    initial_status: AppointmentStatus | str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment | list[Appointment]:
    """Book a single appointment or a whole series.

    A series is all-or-nothing: if any occurrence conflicts, ``BookingConflict``
    carries the result for every occurrence and no row is written.
    """
    status = resolve_initial_status(initial_status)
    template = get_template(db, provider_id)
    intervals = occurrence_intervals(start, end, recurrence, template.timezone)
    series_id = uuid.uuid4().hex if recurrence is not None else None

    def stage(session: Session) -> list[Appointment]:
        created_at = utc_now()
        appointments = [
            Appointment(
                provider_id=provider_id,
                client_id=client_id,
                start_time=interval.start,
                end_time=interval.end,
                status=status.value,
                notes=notes,
                series_id=series_id,
                recurrence_frequency=recurrence.frequency.value if recurrence is not None else None,
                recurrence_end_date=to_utc_naive(recurrence.end_date) if recurrence is not None else None,
                created_at=created_at,
                updated_at=created_at,
            )
            for interval in intervals
        ]
        session.add_all(appointments)
        return appointments

    appointments = coordinator.reserve_and_commit(db, provider_id, intervals, stage, now=now)
    logger.info(
        'Booked %s appointment(s) for provider %s, client %s (series %s)',
        len(appointments),
        provider_id,
        client_id,
        series_id,
    )

    if recurrence is None:
        return appointments[0]
    return appointments


def get_appointment(db: Session, appointment_id: int, provider_id: int | None = None) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if provider_id is not None:
        query = query.filter(Appointment.provider_id == provider_id)

    appointment = query.first()
    if appointment is None:
        raise NotFound('Appointment not found.')
    return appointment


def list_appointments(
    db: Session,
    provider_id: int | None = None,
    range_start: datetime | None = None,
    range_end: datetime | None = None,
    include_cancelled: bool = True,
    client_id: int | None = None,
) -> list[Appointment]:
    query = db.query(Appointment)
    if provider_id is not None:
        query = query.filter(Appointment.provider_id == provider_id)
    if client_id is not None:
        query = query.filter(Appointment.client_id == client_id)
    if range_start is not None:
        query = query.filter(Appointment.end_time > to_utc_naive(range_start))
    if range_end is not None:
        query = query.filter(Appointment.start_time < to_utc_naive(range_end))
    if not include_cancelled:
        query = query.filter(Appointment.status != AppointmentStatus.CANCELLED.value)
    return query.order_by(Appointment.start_time.asc()).all()


def _apply_status(appointment: Appointment, status: AppointmentStatus, reason: str | None, changed_at: datetime) -> None:
    current = AppointmentStatus(appointment.status)
    if status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(current.value, status.value)

    appointment.status = status.value
    appointment.updated_at = changed_at
    if status is AppointmentStatus.CANCELLED:
        appointment.cancellation_reason = reason


def update_status(
    db: Session,
    coordinator: BookingCoordinator,
    appointment_id: int,
    new_status: AppointmentStatus | str,
    provider_id: int | None = None,
    reason: str | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id, provider_id)
    status = AppointmentStatus(new_status)
    _apply_status(appointment, status, reason, utc_now())

    try:
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Appointment %s is now %s', appointment.id, appointment.status)
    coordinator.record_change(appointment.provider_id, status.value, [appointment.id])
    return appointment


def cancel_appointment(
    db: Session,
    coordinator: BookingCoordinator,
    appointment_id: int,
    provider_id: int | None = None,
    reason: str | None = None,
) -> Appointment:
    return update_status(db, coordinator, appointment_id, AppointmentStatus.CANCELLED, provider_id, reason)


def cancel_series(
    db: Session,
    coordinator: BookingCoordinator,
    provider_id: int,
    series_id: str,
    from_time: datetime | None = None,
    reason: str | None = None,
) -> list[Appointment]:
    """Cancel every still-open occurrence of a series, optionally only from a point in time."""
    query = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.series_id == series_id,
        Appointment.status.in_([status.value for status in ALLOWED_TRANSITIONS]),
    )
    if from_time is not None:
        query = query.filter(Appointment.start_time >= to_utc_naive(from_time))

    appointments = query.order_by(Appointment.start_time.asc()).all()
    if not appointments:
        raise NotFound('No open appointments found for this series.')

    changed_at = utc_now()
    for appointment in appointments:
        _apply_status(appointment, AppointmentStatus.CANCELLED, reason, changed_at)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Cancelled %s occurrence(s) of series %s', len(appointments), series_id)
    coordinator.record_change(provider_id, AppointmentStatus.CANCELLED.value, [appointment.id for appointment in appointments])
    return appointments


def reschedule_appointment(
    db: Session,
    coordinator: BookingCoordinator,
    appointment_id: int,
    new_start: datetime,
    new_end: datetime | None = None,
    provider_id: int | None = None,
    now: datetime | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id, provider_id)
    current = AppointmentStatus(appointment.status)
    if current not in INITIAL_STATUSES:
        raise InvalidStatusTransition(current.value, 'rescheduled')

    new_start = to_utc_naive(new_start)
    new_end = to_utc_naive(new_end) if new_end is not None else new_start + (appointment.end_time - appointment.start_time)
    interval = Interval(new_start, new_end)

    def stage(session: Session) -> list[Appointment]:
        appointment.start_time = interval.start
        appointment.end_time = interval.end
        appointment.updated_at = utc_now()
        return [appointment]

    coordinator.reserve_and_commit(
        db,
        appointment.provider_id,
        [interval],
        stage,
        exclude_appointment_id=appointment.id,
        now=now,
        action='rescheduled',
    )
    logger.info('Rescheduled appointment %s to %s - %s', appointment.id, interval.start, interval.end)
    return appointment
