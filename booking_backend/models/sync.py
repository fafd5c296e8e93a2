"""External calendar sync model definitions."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from booking_backend.database import Base
from booking_backend.scheduling.intervals import utc_now


class SyncDirection(str, Enum):
    TWO_WAY = 'two_way'
    TO_EXTERNAL = 'to_external'
    FROM_EXTERNAL = 'from_external'


class PrivacyLevel(str, Enum):
    BUSY_ONLY = 'busy_only'
    GENERIC = 'generic'
    DETAILED = 'detailed'


class CalendarSyncSettings(Base):
    """Per-provider external calendar link."""
    __tablename__ = "calendar_sync_settings"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    sync_enabled = Column(Boolean, default=True, nullable=False)
    sync_direction = Column(String, default=SyncDirection.TWO_WAY.value, nullable=False)
    privacy_level = Column(String, default=PrivacyLevel.GENERIC.value, nullable=False)
    cursor = Column(String)
    last_synced_at = Column(DateTime)


class SyncResolution(Base):
    """Audit record of how a local/external disagreement was resolved."""
    __tablename__ = "sync_resolutions"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True, nullable=False)
    field = Column(String, nullable=False)
    old_value = Column(String)
    new_value = Column(String)
    source = Column(String, nullable=False)  # local/external
    outcome = Column(String, nullable=False)  # applied/kept_local/rejected
    resolved_at = Column(DateTime, default=utc_now)
