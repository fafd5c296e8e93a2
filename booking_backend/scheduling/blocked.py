"""Blocked interval store.

Blocked intervals may overlap each other; readers take their union.
"""

import logging
import uuid
from datetime import date, datetime, time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.errors import NotFound
from booking_backend.models.blocked_interval import BlockedInterval, BlockReason
from booking_backend.scheduling.intervals import Interval, localize, to_local, to_utc_naive
from booking_backend.scheduling.recurrence import expand_recurrence
from booking_backend.scheduling.templates import get_template, working_span

logger = logging.getLogger(__name__)

MAX_BLOCK_NOTES_LENGTH = 500


def _normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_BLOCK_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_BLOCK_NOTES_LENGTH} characters or fewer.')
    return normalized


def _build_blocked_interval(
    provider_id: int,
    interval: Interval,
    reason: BlockReason | str,
    notes: str | None,
    series_id: str | None = None,
    external_event_id: str | None = None,
) -> BlockedInterval:
    return BlockedInterval(
        provider_id=provider_id,
        start_time=interval.start,
        end_time=interval.end,
        reason=BlockReason(reason).value,
        notes=_normalize_notes(notes),
        series_id=series_id,
        external_event_id=external_event_id,
    )


def add_blocked_interval(
    db: Session,
    provider_id: int,
    start: datetime,
    end: datetime,
    reason: BlockReason | str = BlockReason.OTHER,
    notes: str | None = None,
    external_event_id: str | None = None,
) -> BlockedInterval:
    interval = Interval(to_utc_naive(start), to_utc_naive(end))
    blocked = _build_blocked_interval(provider_id, interval, reason, notes, external_event_id=external_event_id)

    try:
        db.add(blocked)
        db.commit()
        db.refresh(blocked)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Blocked %s - %s for provider %s (%s)', interval.start, interval.end, provider_id, blocked.reason)
    return blocked


def add_recurring_blocked_interval(
    db: Session,
    provider_id: int,
    start: datetime,
    end: datetime,
    frequency: str,
    until: datetime,
    reason: BlockReason | str = BlockReason.OTHER,
    notes: str | None = None,
) -> list[BlockedInterval]:
    """Store one block per occurrence, all sharing a series id."""
    first = Interval(to_utc_naive(start), to_utc_naive(end))
    timezone_name = get_template(db, provider_id).timezone
    local_start = to_local(first.start, timezone_name)
    local_until = to_local(to_utc_naive(until), timezone_name)
    series_id = uuid.uuid4().hex

    blocks = [
        _build_blocked_interval(
            provider_id,
            Interval(to_utc_naive(occurrence), to_utc_naive(occurrence) + first.duration),
            reason,
            notes,
            series_id=series_id,
        )
        for occurrence in expand_recurrence(local_start, frequency, local_until)
    ]

    try:
        db.add_all(blocks)
        db.commit()
        for blocked in blocks:
            db.refresh(blocked)
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info('Added %s recurring blocks for provider %s (series %s)', len(blocks), provider_id, series_id)
    return blocks


def remove_blocked_interval(db: Session, provider_id: int, blocked_id: int) -> None:
    blocked = db.query(BlockedInterval).filter(
        BlockedInterval.id == blocked_id,
        BlockedInterval.provider_id == provider_id,
    ).first()

    if blocked is None:
        raise NotFound('Blocked time not found.')

    try:
        db.delete(blocked)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def list_blocked_in_range(db: Session, provider_id: int, range_start: datetime, range_end: datetime) -> list[BlockedInterval]:
    return db.query(BlockedInterval).filter(
        BlockedInterval.provider_id == provider_id,
        BlockedInterval.start_time < to_utc_naive(range_end),
        BlockedInterval.end_time > to_utc_naive(range_start),
    ).order_by(BlockedInterval.start_time.asc()).all()


def block_outside_window(
    db: Session,
    provider_id: int,
    day: date,
    window_start: time,
    window_end: time,
    notes: str | None = None,
) -> list[BlockedInterval]:
    """Narrow one day's working hours to a chosen window.

    Creates an off-hours block before and after the window, limited to that
    day's template working span, and nothing else.
    """
    template = get_template(db, provider_id)
    span = working_span(template, day)
    window = Interval(localize(day, window_start, template.timezone), localize(day, window_end, template.timezone))

    if span is None:
        return []

    pieces = []
    if span.start < window.start:
        pieces.append((span.start, min(window.start, span.end)))
    if window.end < span.end:
        pieces.append((max(window.end, span.start), span.end))

    return [
        add_blocked_interval(db, provider_id, start, end, BlockReason.OFF_HOURS, notes)
        for start, end in pieces
        if end > start
    ]
