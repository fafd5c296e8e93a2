"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from booking_backend.database import Base
from booking_backend.scheduling.intervals import utc_now


class AppointmentStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'


class SyncState(str, Enum):
    UNSYNCED = 'unsynced'
    SYNCING = 'syncing'
    SYNCED = 'synced'
    SYNC_ERROR = 'sync_error'


class Appointment(Base):
    """Represents a scheduled appointment (one row per occurrence of a series)."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    notes = Column(String)
    cancellation_reason = Column(String)
    series_id = Column(String, index=True)
    recurrence_frequency = Column(String)
    recurrence_end_date = Column(DateTime)
    external_sync_state = Column(String, nullable=False, default=SyncState.UNSYNCED.value)
    external_event_id = Column(String)
    sync_error = Column(String)
    last_synced_at = Column(DateTime)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)
