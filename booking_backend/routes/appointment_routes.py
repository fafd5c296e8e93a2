from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_provider, get_current_user
from booking_backend.core.errors import SchedulingError
from booking_backend.models.appointment import Appointment, AppointmentStatus
from booking_backend.models.user import ADMIN_ROLE, CLIENT_ROLE, User
from booking_backend.routes.deps import (
    database_unavailable,
    ensure_database_ready,
    get_coordinator,
    get_db,
    resolve_provider_id,
    scheduling_http_error,
)
from booking_backend.scheduling.booking import (
    RecurrenceRequest,
    cancel_appointment,
    cancel_series,
    get_appointment,
    list_appointments,
    request_booking,
    reschedule_appointment,
    update_status,
)
from booking_backend.scheduling.coordinator import BookingCoordinator
from booking_backend.scheduling.validator import ValidationResult, validate_candidate

router = APIRouter(tags=['appointments'])

MIN_APPOINTMENT_MINUTES = 15
MAX_APPOINTMENT_MINUTES = 480
MAX_APPOINTMENT_NOTES_LENGTH = 600


def _check_duration(value: int | None) -> int | None:
    if value is None:
        return None
    if not MIN_APPOINTMENT_MINUTES <= value <= MAX_APPOINTMENT_MINUTES:
        raise ValueError(
            f'Duration must be between {MIN_APPOINTMENT_MINUTES} and {MAX_APPOINTMENT_MINUTES} minutes.'
        )
    return value


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Text must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class ValidateAppointmentRequest(BaseModel):
    provider_id: int
    start_time: datetime
    duration_minutes: int
    exclude_appointment_id: int | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        return _check_duration(value)


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    start_time: datetime
    duration_minutes: int
    client_id: int | None = None
    recurrence: RecurrenceRequest | None = None
    initial_status: AppointmentStatus | None = None
    notes: str | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        return _check_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class CancelSeriesRequest(CancelAppointmentRequest):
    from_time: datetime | None = None


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime
    duration_minutes: int | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _check_duration(value)


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    client_id: int | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    notes: str | None = None
    cancellation_reason: str | None = None
    series_id: str | None = None
    recurrence_frequency: str | None = None
    external_sync_state: str
    external_event_id: str | None = None

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    series_id: str | None = None
    appointments: list[AppointmentResponse]


def _authorize(appointment: Appointment, current_user: User) -> None:
    if current_user.role == ADMIN_ROLE:
        return
    if current_user.id not in {appointment.provider_id, appointment.client_id}:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only manage your own appointments.',
        )


@router.post('/validate', response_model=ValidationResult)
def validate_appointment(
    data: ValidateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return validate_candidate(
            db,
            data.provider_id,
            data.start_time,
            data.start_time + timedelta(minutes=data.duration_minutes),
            exclude_appointment_id=data.exclude_appointment_id,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    is_client = current_user.role == CLIENT_ROLE
    client_id = current_user.id if is_client or data.client_id is None else data.client_id
    if is_client and data.initial_status is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only providers can choose the initial appointment status.',
        )

    ensure_database_ready()

    try:
        booked = request_booking(
            db,
            coordinator,
            data.provider_id,
            client_id,
            data.start_time,
            data.start_time + timedelta(minutes=data.duration_minutes),
            recurrence=data.recurrence,
            initial_status=data.initial_status,
            notes=data.notes,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    appointments = booked if isinstance(booked, list) else [booked]
    return BookingResponse(
        series_id=appointments[0].series_id,
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
    )


@router.get('', response_model=list[AppointmentResponse])
def list_my_appointments(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    include_cancelled: bool = Query(default=True),
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if current_user.role == CLIENT_ROLE:
            appointments = list_appointments(
                db,
                provider_id=provider_id,
                range_start=start,
                range_end=end,
                include_cancelled=include_cancelled,
                client_id=current_user.id,
            )
        else:
            appointments = list_appointments(
                db,
                provider_id=resolve_provider_id(current_user, provider_id),
                range_start=start,
                range_end=end,
                include_cancelled=include_cancelled,
            )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def change_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()

    try:
        _authorize(get_appointment(db, appointment_id), current_user)
        appointment = update_status(db, coordinator, appointment_id, data.status, reason=data.reason)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return AppointmentResponse.model_validate(appointment)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel(
    appointment_id: int,
    data: CancelAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()

    try:
        _authorize(get_appointment(db, appointment_id), current_user)
        appointment = cancel_appointment(db, coordinator, appointment_id, reason=data.reason)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return AppointmentResponse.model_validate(appointment)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()

    new_end = None
    if data.duration_minutes is not None:
        new_end = data.start_time + timedelta(minutes=data.duration_minutes)

    try:
        _authorize(get_appointment(db, appointment_id), current_user)
        appointment = reschedule_appointment(db, coordinator, appointment_id, data.start_time, new_end)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return AppointmentResponse.model_validate(appointment)


@router.post('/series/{series_id}/cancel', response_model=list[AppointmentResponse])
def cancel_whole_series(
    series_id: str,
    data: CancelSeriesRequest,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        appointments = cancel_series(db, coordinator, provider_id, series_id, data.from_time, data.reason)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return [AppointmentResponse.model_validate(appointment) for appointment in appointments]
