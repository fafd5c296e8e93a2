from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core.errors import (
    BookingConflict,
    ExternalCalendarError,
    InvalidInterval,
    InvalidRecurrence,
    InvalidStatusTransition,
    InvalidTemplate,
    NotFound,
    RecurrenceTooLong,
    ReservationTimeout,
    SchedulingError,
)
from booking_backend.database import SessionLocal, ensure_appointment_schema, ensure_blocked_interval_schema
from booking_backend.models.user import ADMIN_ROLE, User
from booking_backend.scheduling.calendar_client import get_calendar_client
from booking_backend.scheduling.coordinator import BookingCoordinator, booking_coordinator
from booking_backend.scheduling.sync import ExternalSyncReconciler

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL.'


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_blocked_interval_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_coordinator() -> BookingCoordinator:
    return booking_coordinator


def get_reconciler() -> ExternalSyncReconciler:
    return ExternalSyncReconciler(get_calendar_client(), booking_coordinator)


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def scheduling_http_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, BookingConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail())
    if isinstance(exc, InvalidTemplate):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={'message': str(exc), 'violations': exc.violations},
        )
    if isinstance(exc, (InvalidInterval, InvalidRecurrence, RecurrenceTooLong)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, InvalidStatusTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ReservationTimeout):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f'{exc} Please retry the request.',
            headers={'Retry-After': '1'},
        )
    if isinstance(exc, ExternalCalendarError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def resolve_provider_id(current_user: User, provider_id: int | None) -> int:
    """Providers act on their own calendar; admins may act on any provider's."""
    if provider_id is None or provider_id == current_user.id:
        return current_user.id
    if current_user.role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only manage your own calendar.',
        )
    return provider_id
