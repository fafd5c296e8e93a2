"""Blocked interval model definitions."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from booking_backend.database import Base
from booking_backend.scheduling.intervals import utc_now


class BlockReason(str, Enum):
    VACATION = 'vacation'
    SICK = 'sick'
    TRAINING = 'training'
    PERSONAL = 'personal'
    OFF_HOURS = 'off-hours'
    OTHER = 'other'


class BlockedInterval(Base):
    """Closed time that subtracts from a provider's availability."""
    __tablename__ = "blocked_intervals"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    reason = Column(String, nullable=False)
    notes = Column(String)
    series_id = Column(String, index=True)
    external_event_id = Column(String, index=True)
    created_at = Column(DateTime, default=utc_now)
