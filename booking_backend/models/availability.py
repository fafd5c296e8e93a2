"""Availability template model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Time
from booking_backend.database import Base
from booking_backend.scheduling.intervals import utc_now


class AvailabilityTemplate(Base):
    """A provider's weekly working template and booking policy."""
    __tablename__ = "availability_templates"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    buffer_minutes = Column(Integer, nullable=False)
    max_daily_appointments = Column(Integer, nullable=False)
    advance_booking_days = Column(Integer, nullable=False)
    min_notice_hours = Column(Integer, nullable=False)
    timezone = Column(String, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class WorkInterval(Base):
    """One working interval of a template day (0 = Sunday)."""
    __tablename__ = "work_intervals"

    id = Column(Integer, primary_key=True)
    template_id = Column(Integer, ForeignKey("availability_templates.id"), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
