import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_backend.database import Base  # noqa: E402
from booking_backend.models import appointment, availability, blocked_interval, sync  # noqa: E402,F401
from booking_backend.models.user import ADMIN_ROLE, CLIENT_ROLE, PROVIDER_ROLE, User  # noqa: E402
from booking_backend.scheduling.coordinator import BookingCoordinator  # noqa: E402
from booking_backend.scheduling.intervals import utc_now  # noqa: E402
from booking_backend.scheduling.templates import AvailabilityTemplateData, TimeRange, replace_template  # noqa: E402

# Tuesday; the Monday used throughout the tests is 2030-01-07.
NOW = datetime(2030, 1, 1, 8, 0)
MONDAY = date(2030, 1, 7)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def upcoming_monday(min_days_ahead: int = 3) -> date:
    """A Monday that is far enough from the real clock to clear a 24h notice."""
    day = (utc_now() + timedelta(days=min_days_ahead)).date()
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day


def weekday_template(**overrides) -> AvailabilityTemplateData:
    nine_to_five = [TimeRange(start_time=time(9, 0), end_time=time(17, 0))]
    values = {
        'weekly_schedule': {day: list(nine_to_five) if 1 <= day <= 5 else [] for day in range(7)},
        'buffer_minutes': 15,
        'max_daily_appointments': 8,
        'advance_booking_days': 60,
        'min_notice_hours': 24,
        'timezone': 'UTC',
    }
    values.update(overrides)
    return AvailabilityTemplateData(**values)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _add_user(db, email: str, role: str) -> User:
    user = User(email=email, hashed_password='', full_name=email.split('@')[0], role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provider(db) -> User:
    return _add_user(db, 'provider@example.com', PROVIDER_ROLE)


@pytest.fixture
def client_user(db) -> User:
    return _add_user(db, 'client@example.com', CLIENT_ROLE)


@pytest.fixture
def admin(db) -> User:
    return _add_user(db, 'admin@example.com', ADMIN_ROLE)


@pytest.fixture
def template(db, provider) -> AvailabilityTemplateData:
    return replace_template(db, provider.id, weekday_template())


@pytest.fixture
def coordinator() -> BookingCoordinator:
    return BookingCoordinator(lease_seconds=5, wait_seconds=5)
