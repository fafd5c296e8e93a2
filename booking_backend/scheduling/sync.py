"""External calendar reconciliation.

Inbound changes are pulled first so that outbound pushes never overwrite an
external edit that has not been looked at yet. Local status always wins; for
times, the side with the most recent modification wins, and an external time
is only applied after the conflict validator accepts it.
"""

import logging
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.core.errors import ExternalCalendarError, InvalidInterval, NotFound, SyncConflict
from booking_backend.models.appointment import Appointment, AppointmentStatus, SyncState
from booking_backend.models.blocked_interval import BlockedInterval, BlockReason
from booking_backend.models.sync import CalendarSyncSettings, PrivacyLevel, SyncDirection, SyncResolution
from booking_backend.scheduling.blocked import add_blocked_interval
from booking_backend.scheduling.calendar_client import (
    ChangeAction,
    ExternalCalendarClient,
    ExternalChange,
    ExternalEventPayload,
)
from booking_backend.scheduling.coordinator import BookingCoordinator
from booking_backend.scheduling.intervals import Interval, to_utc_naive, utc_now
from booking_backend.scheduling.validator import validate_candidate

logger = logging.getLogger(__name__)

LIVE_STATUSES = {AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value}
IMPORTED_BLOCK_NOTES = 'Imported from external calendar'


class SyncReport(BaseModel):
    provider_id: int
    created: list[int] = []
    updated: list[int] = []
    deleted: list[int] = []
    conflicted: list[dict] = []
    imported: list[str] = []
    released: list[str] = []
    failed: list[int] = []
    cursor: str | None = None


class SyncStatus(BaseModel):
    provider_id: int
    sync_enabled: bool
    sync_direction: SyncDirection
    privacy_level: PrivacyLevel
    last_synced_at: datetime | None = None
    counts: dict[str, int]
    errors: list[dict]


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def _format_interval(start: datetime, end: datetime) -> str:
    return f'{start.isoformat()}/{end.isoformat()}'


def get_sync_settings(db: Session, provider_id: int) -> CalendarSyncSettings:
    settings = db.query(CalendarSyncSettings).filter(CalendarSyncSettings.provider_id == provider_id).first()
    if settings is None:
        settings = CalendarSyncSettings(
            provider_id=provider_id,
            sync_enabled=True,
            sync_direction=SyncDirection.TWO_WAY.value,
            privacy_level=PrivacyLevel.GENERIC.value,
        )
        db.add(settings)
        _commit(db)
        db.refresh(settings)
    return settings


def update_sync_settings(
    db: Session,
    provider_id: int,
    sync_enabled: bool | None = None,
    sync_direction: SyncDirection | str | None = None,
    privacy_level: PrivacyLevel | str | None = None,
) -> CalendarSyncSettings:
    settings = get_sync_settings(db, provider_id)
    if sync_enabled is not None:
        settings.sync_enabled = sync_enabled
    if sync_direction is not None:
        settings.sync_direction = SyncDirection(sync_direction).value
    if privacy_level is not None:
        settings.privacy_level = PrivacyLevel(privacy_level).value

    _commit(db)
    db.refresh(settings)
    logger.info(
        'Sync settings for provider %s: enabled=%s direction=%s privacy=%s',
        provider_id,
        settings.sync_enabled,
        settings.sync_direction,
        settings.privacy_level,
    )
    return settings


def build_event_payload(appointment: Appointment, privacy_level: PrivacyLevel | str) -> ExternalEventPayload:
    privacy_level = PrivacyLevel(privacy_level)
    if privacy_level is PrivacyLevel.BUSY_ONLY:
        title, description = 'Busy', None
    elif privacy_level is PrivacyLevel.GENERIC:
        title, description = 'Appointment', None
    else:
        title = f'Appointment #{appointment.id} ({appointment.status})'
        description = appointment.notes

    return ExternalEventPayload(
        title=title,
        start=appointment.start_time,
        end=appointment.end_time,
        description=description,
    )


def get_sync_status(db: Session, provider_id: int) -> SyncStatus:
    settings = get_sync_settings(db, provider_id)
    counts = {state.value: 0 for state in SyncState}
    rows = db.query(Appointment.external_sync_state, func.count(Appointment.id)).filter(
        Appointment.provider_id == provider_id,
    ).group_by(Appointment.external_sync_state).all()
    for state, count in rows:
        counts[state] = count

    errors = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.external_sync_state == SyncState.SYNC_ERROR.value,
    ).order_by(Appointment.start_time.asc()).all()

    return SyncStatus(
        provider_id=provider_id,
        sync_enabled=settings.sync_enabled,
        sync_direction=settings.sync_direction,
        privacy_level=settings.privacy_level,
        last_synced_at=settings.last_synced_at,
        counts=counts,
        errors=[{'appointment_id': appointment.id, 'sync_error': appointment.sync_error} for appointment in errors],
    )


class ExternalSyncReconciler:
    def __init__(self, client: ExternalCalendarClient, coordinator: BookingCoordinator):
        self.client = client
        self.coordinator = coordinator

    def reconcile(self, db: Session, provider_id: int, now: datetime | None = None) -> SyncReport:
        now = to_utc_naive(now) if now is not None else utc_now()
        settings = get_sync_settings(db, provider_id)
        report = SyncReport(provider_id=provider_id, cursor=settings.cursor)

        if not settings.sync_enabled:
            logger.info('Calendar sync disabled for provider %s; skipping', provider_id)
            return report

        direction = SyncDirection(settings.sync_direction)
        if direction in (SyncDirection.TWO_WAY, SyncDirection.FROM_EXTERNAL):
            self._pull(db, settings, report, now)
        if direction in (SyncDirection.TWO_WAY, SyncDirection.TO_EXTERNAL):
            self._push_pending(db, settings, report, now)

        settings.last_synced_at = now
        _commit(db)
        logger.info(
            'Reconciled provider %s: created=%s updated=%s deleted=%s conflicted=%s imported=%s failed=%s',
            provider_id,
            len(report.created),
            len(report.updated),
            len(report.deleted),
            len(report.conflicted),
            len(report.imported),
            len(report.failed),
        )
        return report

    def retry(self, db: Session, appointment_id: int, now: datetime | None = None) -> SyncReport:
        """Push one appointment again, typically after it landed in ``sync_error``.

        The local state is what gets pushed, so retrying an inbound time
        conflict resolves it in favour of the local appointment.
        """
        now = to_utc_naive(now) if now is not None else utc_now()
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise NotFound('Appointment not found.')

        settings = get_sync_settings(db, appointment.provider_id)
        report = SyncReport(provider_id=appointment.provider_id, cursor=settings.cursor)
        self._push(db, appointment, settings, report, now)
        return report

    def _pull(self, db: Session, settings: CalendarSyncSettings, report: SyncReport, now: datetime) -> None:
        provider_id = settings.provider_id
        batch = self.client.pull_changes(provider_id, settings.cursor)

        for change in batch.changes:
            appointment = db.query(Appointment).filter(
                Appointment.provider_id == provider_id,
                Appointment.external_event_id == change.event_id,
            ).first()

            if appointment is None:
                self._apply_unlinked(db, provider_id, change, report)
            elif change.action is ChangeAction.DELETED or change.cancelled:
                self._apply_external_delete(db, appointment, change)
            elif change.start is not None and change.end is not None:
                self._apply_external_move(db, appointment, change, report, now)

        settings.cursor = batch.cursor
        report.cursor = batch.cursor
        _commit(db)

    def _record(
        self,
        db: Session,
        appointment: Appointment,
        field: str,
        old_value: str | None,
        new_value: str | None,
        source: str,
        outcome: str,
    ) -> None:
        db.add(SyncResolution(
            provider_id=appointment.provider_id,
            appointment_id=appointment.id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            source=source,
            outcome=outcome,
            resolved_at=utc_now(),
        ))
        logger.info(
            'Sync resolution for appointment %s: %s %s -> %s (%s, %s)',
            appointment.id,
            field,
            old_value,
            new_value,
            source,
            outcome,
        )

    def _apply_unlinked(self, db: Session, provider_id: int, change: ExternalChange, report: SyncReport) -> None:
        blocked = db.query(BlockedInterval).filter(
            BlockedInterval.provider_id == provider_id,
            BlockedInterval.external_event_id == change.event_id,
        ).first()

        if change.action is ChangeAction.DELETED or change.cancelled:
            if blocked is not None:
                db.delete(blocked)
                _commit(db)
                report.released.append(change.event_id)
            return

        if change.start is None or change.end is None:
            return

        try:
            interval = Interval(to_utc_naive(change.start), to_utc_naive(change.end))
        except InvalidInterval:
            logger.warning('Ignoring external event %s with an empty time range', change.event_id)
            return

        if blocked is None:
            add_blocked_interval(
                db,
                provider_id,
                interval.start,
                interval.end,
                reason=BlockReason.OTHER,
                notes=IMPORTED_BLOCK_NOTES,
                external_event_id=change.event_id,
            )
        else:
            blocked.start_time = interval.start
            blocked.end_time = interval.end
            _commit(db)
        report.imported.append(change.event_id)

    def _apply_external_delete(self, db: Session, appointment: Appointment, change: ExternalChange) -> None:
        # Cancellation is decided locally; a live appointment gets its event back on the next push.
        self._record(db, appointment, 'external_event_id', change.event_id, None, 'external', 'kept_local')
        appointment.external_event_id = None
        if appointment.status in LIVE_STATUSES:
            appointment.external_sync_state = SyncState.UNSYNCED.value
        else:
            appointment.external_sync_state = SyncState.SYNCED.value
        _commit(db)

    def _apply_external_move(
        self,
        db: Session,
        appointment: Appointment,
        change: ExternalChange,
        report: SyncReport,
        now: datetime,
    ) -> None:
        new_start = to_utc_naive(change.start)
        new_end = to_utc_naive(change.end)
        if new_start == appointment.start_time and new_end == appointment.end_time:
            return

        old_value = _format_interval(appointment.start_time, appointment.end_time)
        new_value = _format_interval(new_start, new_end)
        changed_locally = appointment.last_synced_at is None or appointment.updated_at > appointment.last_synced_at

        if appointment.status not in LIVE_STATUSES or (
            changed_locally and appointment.updated_at > to_utc_naive(change.updated_at)
        ):
            self._record(db, appointment, 'time', old_value, new_value, 'local', 'kept_local')
            _commit(db)
            return

        applied = False
        with self.coordinator.serialized(appointment.provider_id) as reservation:
            if new_end <= new_start:
                reasons = ['External event end must be after its start.']
            else:
                result = validate_candidate(
                    db,
                    appointment.provider_id,
                    new_start,
                    new_end,
                    exclude_appointment_id=appointment.id,
                    now=now,
                    enforce_booking_window=False,
                )
                reasons = result.reasons

            if not reasons:
                appointment.start_time = new_start
                appointment.end_time = new_end
                appointment.updated_at = now
                appointment.last_synced_at = now
                appointment.external_sync_state = SyncState.SYNCED.value
                appointment.sync_error = None
                self._record(db, appointment, 'time', old_value, new_value, 'external', 'applied')
                try:
                    self.coordinator.begin_commit(reservation)
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
                report.updated.append(appointment.id)
                applied = True
            else:
                conflict = SyncConflict(
                    appointment.id,
                    'time',
                    old_value,
                    new_value,
                    'external',
                    '; '.join(reasons),
                )
                appointment.external_sync_state = SyncState.SYNC_ERROR.value
                appointment.sync_error = conflict.message
                self._record(db, appointment, 'time', old_value, new_value, 'external', 'rejected')
                _commit(db)
                report.conflicted.append(conflict.to_dict())
                logger.warning('External move of appointment %s rejected: %s', appointment.id, conflict.message)

        if applied:
            self.coordinator.record_change(appointment.provider_id, 'synced', [appointment.id])

    def _push_pending(self, db: Session, settings: CalendarSyncSettings, report: SyncReport, now: datetime) -> None:
        appointments = db.query(Appointment).filter(
            Appointment.provider_id == settings.provider_id,
            Appointment.external_sync_state != SyncState.SYNC_ERROR.value,
            or_(
                Appointment.external_sync_state == SyncState.UNSYNCED.value,
                Appointment.last_synced_at.is_(None),
                Appointment.updated_at > Appointment.last_synced_at,
            ),
        ).order_by(Appointment.start_time.asc()).all()

        for appointment in appointments:
            self._push(db, appointment, settings, report, now)

    def _push(
        self,
        db: Session,
        appointment: Appointment,
        settings: CalendarSyncSettings,
        report: SyncReport,
        now: datetime,
    ) -> None:
        previous_state = appointment.external_sync_state
        appointment.external_sync_state = SyncState.SYNCING.value
        _commit(db)

        try:
            if appointment.status not in LIVE_STATUSES:
                if appointment.status == AppointmentStatus.CANCELLED.value and appointment.external_event_id:
                    self.client.delete_event(appointment.provider_id, appointment.external_event_id)
                    appointment.external_event_id = None
                    report.deleted.append(appointment.id)
                elif appointment.external_event_id:
                    self.client.update_event(
                        appointment.provider_id,
                        appointment.external_event_id,
                        build_event_payload(appointment, settings.privacy_level),
                    )
                    report.updated.append(appointment.id)
            elif appointment.external_event_id is None:
                appointment.external_event_id = self.client.create_event(
                    appointment.provider_id,
                    build_event_payload(appointment, settings.privacy_level),
                )
                report.created.append(appointment.id)
            else:
                self.client.update_event(
                    appointment.provider_id,
                    appointment.external_event_id,
                    build_event_payload(appointment, settings.privacy_level),
                )
                report.updated.append(appointment.id)
        except ExternalCalendarError as exc:
            appointment.external_sync_state = SyncState.SYNC_ERROR.value
            appointment.sync_error = str(exc)
            report.failed.append(appointment.id)
            logger.warning('Failed to push appointment %s to the external calendar: %s', appointment.id, exc)
        except Exception:
            db.rollback()
            appointment.external_sync_state = previous_state
            _commit(db)
            raise
        else:
            appointment.external_sync_state = SyncState.SYNCED.value
            appointment.sync_error = None
            appointment.last_synced_at = max(now, appointment.updated_at or now)

        _commit(db)
