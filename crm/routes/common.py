from contextlib import contextmanager
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from crm.database import ensure_appointment_schema, ensure_calendar_schema, ensure_notification_schema
from crm.scheduling.booking import AppointmentNotFound, BookingError, BookingRejected

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_calendar_schema()
        ensure_appointment_schema()
        ensure_notification_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def validate_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError('Datetimes must include a timezone offset.')
    return value


@contextmanager
def booking_errors():
    """Translate booking exceptions into HTTP responses."""
    try:
        yield
    except BookingRejected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason) from exc
    except AppointmentNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (BookingError, SQLAlchemyError) as exc:
        raise database_unavailable() from exc
