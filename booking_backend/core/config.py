import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Slot enumeration and booking serialization
SLOT_GRANULARITY_MINUTES = _get_int(os.getenv("SLOT_GRANULARITY_MINUTES"), 15)
RESERVATION_LEASE_SECONDS = float(os.getenv("RESERVATION_LEASE_SECONDS", "5"))
RESERVATION_WAIT_SECONDS = float(os.getenv("RESERVATION_WAIT_SECONDS", "10"))
RECURRENCE_MAX_OCCURRENCES = _get_int(os.getenv("RECURRENCE_MAX_OCCURRENCES"), 500)

# Provider defaults used until a provider saves its own template
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Asia/Jerusalem")
DEFAULT_BUFFER_MINUTES = _get_int(os.getenv("DEFAULT_BUFFER_MINUTES"), 15)
DEFAULT_MAX_DAILY_APPOINTMENTS = _get_int(os.getenv("DEFAULT_MAX_DAILY_APPOINTMENTS"), 8)
DEFAULT_ADVANCE_BOOKING_DAYS = _get_int(os.getenv("DEFAULT_ADVANCE_BOOKING_DAYS"), 60)
DEFAULT_MIN_NOTICE_HOURS = _get_int(os.getenv("DEFAULT_MIN_NOTICE_HOURS"), 24)

AUTO_CONFIRM_BOOKINGS = _get_bool(os.getenv("AUTO_CONFIRM_BOOKINGS"), default=False)

EXTERNAL_CALENDAR_PROVIDER = os.getenv("EXTERNAL_CALENDAR_PROVIDER", "memory")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_GRANULARITY_MINUTES <= 0:
        raise RuntimeError("SLOT_GRANULARITY_MINUTES must be positive.")
    if RESERVATION_LEASE_SECONDS <= 0 or RESERVATION_WAIT_SECONDS <= 0:
        raise RuntimeError("Reservation timeouts must be positive.")
