from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_backend.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        # Sync route handlers run in FastAPI's thread pool.
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_blocked_interval_schema_checked = False


def _apply_migration_steps(table_name: str, migration_steps: list[tuple[str, str]], index_statements: list[str]) -> None:
    inspector = inspect(engine)

    if table_name not in inspector.get_table_names():
        return

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with engine.begin() as connection:
        for column_name, statement in migration_steps:
            if column_name not in existing_columns:
                connection.execute(text(statement))
        for statement in index_statements:
            connection.execute(text(statement))


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        _apply_migration_steps(
            'appointments',
            [
                ('series_id', 'ALTER TABLE appointments ADD COLUMN series_id VARCHAR'),
                ('external_sync_state', "ALTER TABLE appointments ADD COLUMN external_sync_state VARCHAR DEFAULT 'unsynced'"),
                ('external_event_id', 'ALTER TABLE appointments ADD COLUMN external_event_id VARCHAR'),
                ('sync_error', 'ALTER TABLE appointments ADD COLUMN sync_error VARCHAR'),
                ('last_synced_at', 'ALTER TABLE appointments ADD COLUMN last_synced_at TIMESTAMP'),
                ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_appointments_provider_range ON appointments(provider_id, start_time, end_time)',
                'CREATE INDEX IF NOT EXISTS idx_appointments_series ON appointments(series_id)',
                'CREATE INDEX IF NOT EXISTS idx_appointments_external_event ON appointments(provider_id, external_event_id)',
            ],
        )

        _appointment_schema_checked = True


def ensure_blocked_interval_schema() -> None:
    global _blocked_interval_schema_checked

    if _blocked_interval_schema_checked:
        return

    with _schema_lock:
        if _blocked_interval_schema_checked:
            return

        _apply_migration_steps(
            'blocked_intervals',
            [
                ('external_event_id', 'ALTER TABLE blocked_intervals ADD COLUMN external_event_id VARCHAR'),
                ('series_id', 'ALTER TABLE blocked_intervals ADD COLUMN series_id VARCHAR'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_blocked_intervals_provider_range ON blocked_intervals(provider_id, start_time, end_time)',
            ],
        )

        _blocked_interval_schema_checked = True
