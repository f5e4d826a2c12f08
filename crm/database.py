import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from crm.core import config


logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}

    options = {
        'pool_pre_ping': True,
        'pool_timeout': config.DB_POOL_TIMEOUT_SECONDS,
    }
    if database_url.startswith('postgresql'):
        options['connect_args'] = {
            'connect_timeout': config.DB_CONNECT_TIMEOUT_SECONDS,
            'options': f'-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}',
        }
    return options


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_calendar_schema_checked = False
_appointment_schema_checked = False
_notification_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _apply_migration_steps(table_name: str, migration_steps: list[tuple[str, str]], index_statements: list[str]) -> bool:
    inspector = inspect(engine)

    if table_name not in inspector.get_table_names():
        return False

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with engine.begin() as connection:
        for column_name, statement in migration_steps:
            if column_name not in existing_columns:
                logger.info('Adding column %s.%s', table_name, column_name)
                connection.execute(text(statement))
        for statement in index_statements:
            connection.execute(text(statement))

    return True


def ensure_calendar_schema() -> None:
    global _calendar_schema_checked

    if _calendar_schema_checked:
        return

    with _schema_lock:
        if _calendar_schema_checked:
            return

        _apply_migration_steps(
            'property_calendars',
            [
                ('timezone', "ALTER TABLE property_calendars ADD COLUMN timezone VARCHAR DEFAULT 'America/New_York'"),
                ('property_title', 'ALTER TABLE property_calendars ADD COLUMN property_title VARCHAR'),
            ],
            [],
        )
        _apply_migration_steps(
            'calendar_availability',
            [
                ('slot_duration', 'ALTER TABLE calendar_availability ADD COLUMN slot_duration INTEGER DEFAULT 30'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_calendar_availability_property_day '
                'ON calendar_availability(property_id, day_of_week)',
            ],
        )
        _apply_migration_steps(
            'calendar_blocked_dates',
            [
                ('all_day', 'ALTER TABLE calendar_blocked_dates ADD COLUMN all_day BOOLEAN DEFAULT TRUE'),
                ('start_time', 'ALTER TABLE calendar_blocked_dates ADD COLUMN start_time TIME'),
                ('end_time', 'ALTER TABLE calendar_blocked_dates ADD COLUMN end_time TIME'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_calendar_blocked_dates_property_date '
                'ON calendar_blocked_dates(property_id, blocked_date)',
            ],
        )

        _calendar_schema_checked = True


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
                ('unit_id', 'ALTER TABLE appointments ADD COLUMN unit_id INTEGER'),
                ('reminder_24h_sent', 'ALTER TABLE appointments ADD COLUMN reminder_24h_sent BOOLEAN DEFAULT FALSE'),
                ('reminder_2h_sent', 'ALTER TABLE appointments ADD COLUMN reminder_2h_sent BOOLEAN DEFAULT FALSE'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_appointments_time_range ON appointments(start_time, end_time)',
                'CREATE INDEX IF NOT EXISTS idx_appointments_property_start ON appointments(property_id, start_time)',
            ],
        )

        _appointment_schema_checked = True


def ensure_notification_schema() -> None:
    global _notification_schema_checked

    if _notification_schema_checked:
        return

    with _schema_lock:
        if _notification_schema_checked:
            return

        _apply_migration_steps(
            'notification_queue',
            [
                ('reminder_type', 'ALTER TABLE notification_queue ADD COLUMN reminder_type VARCHAR'),
                ('last_attempt', 'ALTER TABLE notification_queue ADD COLUMN last_attempt TIMESTAMP'),
                ('error_message', 'ALTER TABLE notification_queue ADD COLUMN error_message VARCHAR'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_notification_queue_status_scheduled '
                'ON notification_queue(status, scheduled_for)',
                'CREATE INDEX IF NOT EXISTS idx_notification_queue_appointment '
                'ON notification_queue(appointment_id, status)',
            ],
        )

        _notification_schema_checked = True
