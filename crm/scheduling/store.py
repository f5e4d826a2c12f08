"""Read access to calendar, blocked-date and appointment data.

Every read returns a ``StoreResult`` instead of raising on infrastructure
failure, so callers decide explicitly whether to fail open. Reads never
roll back the caller's transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.models.appointment import Appointment
from crm.models.calendar import CalendarAvailability, CalendarBlockedDate, PropertyCalendar
from crm.models.property import Property

logger = logging.getLogger(__name__)

T = TypeVar('T')

CANCELLED_STATUS = 'cancelled'


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AvailabilityStore:
    """SQLAlchemy-backed reads used by the availability engine."""

    def __init__(self, db: Session):
        self.db = db

    def _read(self, description: str, query: Callable[[], T]) -> StoreResult[T]:
        """Run ``query`` inside a savepoint.

        A failed read rolls back only the savepoint, so row locks and rows
        staged earlier in the caller's transaction survive it.
        """
        try:
            with self.db.begin_nested():
                value = query()
        except SQLAlchemyError as exc:
            logger.warning('Store read failed (%s): %s', description, exc)
            return StoreResult(error=exc)
        return StoreResult(value=value)

    def resolve_calendar_property_id(self, property_id: int) -> StoreResult[int]:
        def query() -> int:
            parent_id = self.db.query(Property.parent_property_id).filter(
                Property.id == property_id,
            ).scalar()
            return parent_id or property_id

        return self._read(f'parent of property {property_id}', query)

    def get_calendar(self, property_id: int) -> StoreResult[PropertyCalendar | None]:
        return self._read(
            f'calendar for property {property_id}',
            lambda: self.db.query(PropertyCalendar).filter(
                PropertyCalendar.property_id == property_id,
            ).first(),
        )

    def get_weekly_windows(self, property_id: int) -> StoreResult[list[CalendarAvailability]]:
        return self._read(
            f'weekly availability for property {property_id}',
            lambda: self.db.query(CalendarAvailability).filter(
                CalendarAvailability.property_id == property_id,
            ).all(),
        )

    def find_blocked_dates(self, property_id: int, day: date) -> StoreResult[list[CalendarBlockedDate]]:
        return self._read(
            f'blocked dates for property {property_id} on {day.isoformat()}',
            lambda: self.db.query(CalendarBlockedDate).filter(
                CalendarBlockedDate.property_id == property_id,
                CalendarBlockedDate.blocked_date == day,
            ).order_by(CalendarBlockedDate.id.asc()).all(),
        )

    def find_overlapping_appointments(
        self,
        property_id: int,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> StoreResult[list[Appointment]]:
        def query() -> list[Appointment]:
            appointments = self.db.query(Appointment).filter(
                Appointment.property_id == property_id,
                Appointment.status != CANCELLED_STATUS,
                Appointment.start_time < end,
                Appointment.end_time > start,
            )
            if exclude_appointment_id is not None:
                appointments = appointments.filter(Appointment.id != exclude_appointment_id)
            return appointments.order_by(Appointment.start_time.asc()).all()

        return self._read(f'appointments for property {property_id}', query)
