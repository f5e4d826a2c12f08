"""
Transactional booking, rescheduling and cancellation of appointments.

Reads used for the availability decision fail open, but the write itself
never does: the governing calendar row is locked for the duration of the
transaction and a partial unique index on (property_id, start_time)
rejects a second active appointment at the same start.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm.models.appointment import APPOINTMENT_STATUSES, SLOT_UNIQUE_INDEX, Appointment
from crm.models.calendar import PropertyCalendar
from crm.models.property import Property
from crm.models.types import utcnow
from crm.scheduling.evaluator import REASON_ALREADY_BOOKED, REASON_INVALID_RANGE, evaluate, require_aware
from crm.scheduling.store import CANCELLED_STATUS, AvailabilityStore
from crm.services.notifications import NotificationSender
from crm.services.reminders import (
    cancel_appointment_reminders,
    schedule_appointment_reminders,
    send_cancellation_notice,
    update_appointment_reminders,
)

logger = logging.getLogger(__name__)

REASON_APPOINTMENT_CANCELLED = 'appointment is cancelled'
REFERENCE_ERROR_DETAIL = 'Appointment references an unknown lead or property.'

SQLITE_SLOT_UNIQUE_MESSAGE = 'UNIQUE constraint failed: appointments.property_id, appointments.start_time'

STATUS_TRANSITIONS = {
    'scheduled': {'confirmed', 'cancelled'},
    'confirmed': {'completed', 'cancelled'},
    'completed': set(),
    'cancelled': set(),
}


class BookingRejected(Exception):
    """The requested interval cannot be booked."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BookingError(Exception):
    """The booking could not be written because the database failed."""


class InvalidBookingReference(ValueError):
    """The appointment points at a lead or property that does not exist."""


class AppointmentNotFound(LookupError):
    pass


class InvalidStatusTransition(ValueError):
    pass


@dataclass
class BookingRequest:
    property_id: int | None
    title: str
    start_time: datetime
    end_time: datetime
    unit_id: int | None = None
    lead_id: int | None = None
    description: str | None = None
    location: str | None = None
    attendees: list[str] = field(default_factory=list)
    status: str = 'scheduled'


@dataclass
class AppointmentChanges:
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] | None = None


def _resolve_property_and_unit(db: Session, property_id: int | None, unit_id: int | None) -> tuple[int | None, int | None]:
    """Map a unit to its building so the building's calendar governs it."""
    if property_id is None:
        return None, unit_id

    parent_id = db.query(Property.parent_property_id).filter(Property.id == property_id).scalar()
    if parent_id:
        return parent_id, unit_id or property_id
    return property_id, unit_id


def _lock_property(db: Session, property_id: int) -> None:
    calendar = db.query(PropertyCalendar).filter(
        PropertyCalendar.property_id == property_id,
    ).with_for_update().first()
    if calendar is None:
        db.query(Property).filter(Property.id == property_id).with_for_update().first()


def _check_interval(
    db: Session,
    property_id: int | None,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> None:
    require_aware(start, 'start_time')
    require_aware(end, 'end_time')
    if end <= start:
        raise BookingRejected(REASON_INVALID_RANGE)
    if property_id is None:
        return

    _lock_property(db, property_id)
    result = evaluate(AvailabilityStore(db), property_id, start, end, exclude_appointment_id)
    if not result.available:
        raise BookingRejected(result.reason)


def is_slot_conflict(exc: IntegrityError) -> bool:
    """True when the violation is the one-active-booking-per-start index."""
    message = str(exc.orig)
    return SLOT_UNIQUE_INDEX in message or SQLITE_SLOT_UNIQUE_MESSAGE in message


def _commit(db: Session, description: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not is_slot_conflict(exc):
            logger.warning('Integrity error on %s: %s', description, exc.orig)
            raise InvalidBookingReference(REFERENCE_ERROR_DETAIL) from exc
        logger.info('Rejected %s: %s', description, exc.orig)
        raise BookingRejected(REASON_ALREADY_BOOKED) from exc


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound(f'Appointment {appointment_id} not found.')
    return appointment


def book_appointment(db: Session, request: BookingRequest, now: datetime | None = None) -> Appointment:
    """Create an appointment if the interval is available.

    Raises ``BookingRejected`` with the evaluator's reason, or with
    "time slot already booked" when a concurrent booking wins the race.
    Raises ``BookingError`` when the database is unreachable.
    """
    try:
        property_id, unit_id = _resolve_property_and_unit(db, request.property_id, request.unit_id)
        _check_interval(db, property_id, request.start_time, request.end_time)

        appointment = Appointment(
            property_id=property_id,
            unit_id=unit_id,
            lead_id=request.lead_id,
            title=request.title,
            description=request.description,
            start_time=request.start_time,
            end_time=request.end_time,
            location=request.location,
            attendees=list(request.attendees),
            status=request.status,
        )
        db.add(appointment)
        _commit(db, f'booking for property {property_id} at {request.start_time.isoformat()}')
        db.refresh(appointment)
    except BookingRejected:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking write failed for property %s', request.property_id)
        raise BookingError('Database unavailable.') from exc

    logger.info('Booked appointment %s for property %s', appointment.id, appointment.property_id)
    schedule_appointment_reminders(db, appointment, now=now)
    return appointment


def reschedule_appointment(
    db: Session,
    appointment_id: int,
    changes: AppointmentChanges,
    now: datetime | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)

    new_start = changes.start_time or appointment.start_time
    new_end = changes.end_time or appointment.end_time
    times_changed = new_start != appointment.start_time or new_end != appointment.end_time

    try:
        if times_changed:
            if appointment.status == CANCELLED_STATUS:
                raise BookingRejected(REASON_APPOINTMENT_CANCELLED)
            _check_interval(db, appointment.property_id, new_start, new_end, exclude_appointment_id=appointment.id)
            appointment.start_time = new_start
            appointment.end_time = new_end
            appointment.reminder_24h_sent = False
            appointment.reminder_2h_sent = False

        for attribute in ('title', 'description', 'location', 'attendees'):
            value = getattr(changes, attribute)
            if value is not None:
                setattr(appointment, attribute, value)

        appointment.updated_at = utcnow()
        _commit(db, f'reschedule of appointment {appointment_id}')
        db.refresh(appointment)
    except BookingRejected:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Reschedule failed for appointment %s', appointment_id)
        raise BookingError('Database unavailable.') from exc

    if times_changed:
        logger.info('Rescheduled appointment %s to %s', appointment.id, appointment.start_time.isoformat())
        update_appointment_reminders(db, appointment, now=now)
    return appointment


def cancel_appointment(
    db: Session,
    appointment_id: int,
    sender: NotificationSender | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if appointment.status == CANCELLED_STATUS:
        return appointment

    try:
        appointment.status = CANCELLED_STATUS
        appointment.updated_at = utcnow()
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Cancel failed for appointment %s', appointment_id)
        raise BookingError('Database unavailable.') from exc

    cancel_appointment_reminders(db, appointment.id)
    if sender is not None:
        send_cancellation_notice(db, appointment, sender)
    logger.info('Cancelled appointment %s', appointment.id)
    return appointment


def update_appointment_status(
    db: Session,
    appointment_id: int,
    new_status: str,
    sender: NotificationSender | None = None,
) -> Appointment:
    if new_status not in APPOINTMENT_STATUSES:
        raise InvalidStatusTransition(f'Unknown appointment status: {new_status}')

    appointment = get_appointment(db, appointment_id)
    if appointment.status == new_status:
        return appointment
    if new_status not in STATUS_TRANSITIONS.get(appointment.status, set()):
        raise InvalidStatusTransition(f'Cannot change appointment status from {appointment.status} to {new_status}.')

    if new_status == CANCELLED_STATUS:
        return cancel_appointment(db, appointment_id, sender)

    try:
        appointment.status = new_status
        appointment.updated_at = utcnow()
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Status update failed for appointment %s', appointment_id)
        raise BookingError('Database unavailable.') from exc

    return appointment
