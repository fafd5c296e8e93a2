import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core import config
from booking_backend.database import Base, engine, ensure_appointment_schema, ensure_blocked_interval_schema
from booking_backend.models import appointment, availability, blocked_interval, sync, user  # noqa: F401
from booking_backend.routes import appointment_routes, auth_routes, availability_routes, sync_routes
from booking_backend.scheduling.coordinator import BookingEvent, booking_coordinator

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='Booking Engine API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def log_booking_event(event: BookingEvent) -> None:
    logger.info(
        'Provider %s calendar changed (%s, revision %s): appointments %s',
        event.provider_id,
        event.action,
        event.revision,
        event.appointment_ids,
    )


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    booking_coordinator.subscribe(log_booking_event)
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_blocked_interval_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')


@app.get('/')
def root():
    return {'status': 'Booking Engine API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(sync_routes.router, prefix='/sync')
