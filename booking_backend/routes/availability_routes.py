from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_provider
from booking_backend.core.errors import SchedulingError
from booking_backend.models.blocked_interval import BlockReason
from booking_backend.models.user import User
from booking_backend.routes.deps import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    resolve_provider_id,
    scheduling_http_error,
)
from booking_backend.scheduling.blocked import (
    MAX_BLOCK_NOTES_LENGTH,
    add_blocked_interval,
    add_recurring_blocked_interval,
    block_outside_window,
    list_blocked_in_range,
    remove_blocked_interval,
)
from booking_backend.scheduling.booking import RecurrenceRequest, occurrence_intervals
from booking_backend.scheduling.intervals import utc_now
from booking_backend.scheduling.slots import compute_available_slots
from booking_backend.scheduling.templates import AvailabilityTemplateData, get_template, replace_template

router = APIRouter(tags=['availability'])

MIN_APPOINTMENT_MINUTES = 15
MAX_APPOINTMENT_MINUTES = 480
MAX_SLOT_RANGE_DAYS = 62


class TemplateResponse(AvailabilityTemplateData):
    provider_id: int


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_BLOCK_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_BLOCK_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateBlockedIntervalRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: BlockReason = BlockReason.OTHER
    notes: str | None = None
    recurrence: RecurrenceRequest | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class BlockOutsideHoursRequest(BaseModel):
    date: date
    window_start: time
    window_end: time
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    @field_validator('window_end')
    @classmethod
    def validate_window(cls, value: time, info: ValidationInfo) -> time:
        window_start = info.data.get('window_start')
        if window_start is not None and value <= window_start:
            raise ValueError('Window end must be after window start.')
        return value


class BlockedIntervalResponse(BaseModel):
    id: int
    provider_id: int
    start_time: datetime
    end_time: datetime
    reason: str
    notes: str | None = None
    series_id: str | None = None
    external_event_id: str | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class RecurrencePreviewRequest(BaseModel):
    provider_id: int
    start_time: datetime
    end_time: datetime
    recurrence: RecurrenceRequest


@router.get('/template/{provider_id}', response_model=TemplateResponse)
def read_template(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        template = get_template(db, provider_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return TemplateResponse(provider_id=provider_id, **template.model_dump())


@router.put('/template', response_model=TemplateResponse)
def update_template(
    data: AvailabilityTemplateData,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        template = replace_template(db, provider_id, data)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return TemplateResponse(provider_id=provider_id, **template.model_dump())


@router.get('/blocked', response_model=list[BlockedIntervalResponse])
def list_blocked(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    range_start = start or utc_now()
    range_end = end or range_start + timedelta(days=MAX_SLOT_RANGE_DAYS)
    if range_end <= range_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Range end must be after range start.',
        )

    try:
        return list_blocked_in_range(db, provider_id, range_start, range_end)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/blocked', response_model=list[BlockedIntervalResponse], status_code=status.HTTP_201_CREATED)
def create_blocked(
    data: CreateBlockedIntervalRequest,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        if data.recurrence is None:
            return [add_blocked_interval(db, provider_id, data.start_time, data.end_time, data.reason, data.notes)]

        return add_recurring_blocked_interval(
            db,
            provider_id,
            data.start_time,
            data.end_time,
            data.recurrence.frequency,
            data.recurrence.end_date,
            data.reason,
            data.notes,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/blocked/outside-hours', response_model=list[BlockedIntervalResponse], status_code=status.HTTP_201_CREATED)
def create_outside_hours_blocks(
    data: BlockOutsideHoursRequest,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        return block_outside_window(db, provider_id, data.date, data.window_start, data.window_end, data.notes)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/blocked/{blocked_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked(
    blocked_id: int,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        remove_blocked_interval(db, provider_id, blocked_id)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/slots/{provider_id}', response_model=list[SlotResponse])
def list_slots(
    provider_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    duration_minutes: int = Query(default=60, ge=MIN_APPOINTMENT_MINUTES, le=MAX_APPOINTMENT_MINUTES),
    db: Session = Depends(get_db),
):
    if end <= start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Range end must be after range start.',
        )
    if end - start > timedelta(days=MAX_SLOT_RANGE_DAYS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Slot ranges are limited to {MAX_SLOT_RANGE_DAYS} days.',
        )

    ensure_database_ready()

    try:
        slots = compute_available_slots(db, provider_id, start, end, duration_minutes)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        SlotResponse(start_time=slot, end_time=slot + timedelta(minutes=duration_minutes))
        for slot in slots
    ]


@router.post('/recurrence-preview', response_model=list[SlotResponse])
def preview_recurrence(data: RecurrencePreviewRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        timezone_name = get_template(db, data.provider_id).timezone
        intervals = occurrence_intervals(data.start_time, data.end_time, data.recurrence, timezone_name)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [SlotResponse(start_time=interval.start, end_time=interval.end) for interval in intervals]
