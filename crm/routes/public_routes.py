import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.auth.dependencies import verify_public_api_key
from crm.core import config
from crm.database import get_db
from crm.models.lead import Lead
from crm.models.property import Property
from crm.routes.common import booking_errors, database_unavailable, ensure_database_ready, validate_aware
from crm.scheduling.booking import BookingRequest, book_appointment
from crm.scheduling.slots import generate_slots
from crm.scheduling.store import AvailabilityStore
from crm.services.notifications import NotificationSender, get_notification_sender
from crm.services.reminders import schedule_lead_notification, send_appointment_request_notice

logger = logging.getLogger(__name__)

router = APIRouter(tags=['public'], dependencies=[Depends(verify_public_api_key)])

MAX_NOTES_LENGTH = 600


class PublicSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class PublicAvailabilityResponse(BaseModel):
    property_id: int
    date: date
    duration_minutes: int
    slots: list[PublicSlotResponse]


class PublicAppointmentRequest(BaseModel):
    property_id: int
    unit_id: int | None = None
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    notes: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if '@' not in normalized or normalized.startswith('@') or normalized.endswith('@'):
            raise ValueError('A valid email is required.')
        return normalized

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return validate_aware(value)

    @field_validator('end_time')
    @classmethod
    def validate_end_time(cls, value: datetime | None, info: ValidationInfo) -> datetime | None:
        if value is None:
            return None
        validate_aware(value)
        start_time = info.data.get('start_time')
        if start_time is not None and value <= start_time:
            raise ValueError('End time must be after start time.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        if len(normalized) > MAX_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')
        return normalized


class PublicAppointmentResponse(BaseModel):
    id: int
    lead_id: int | None = None
    property_id: int | None = None
    unit_id: int | None = None
    start_time: datetime
    end_time: datetime
    status: str

    class Config:
        from_attributes = True


def find_or_create_lead(db: Session, data: PublicAppointmentRequest) -> tuple[Lead, bool]:
    """Reuse the lead with this email, or stage a new one in the current transaction."""
    lead = db.query(Lead).filter(Lead.email == data.email).order_by(Lead.id.asc()).first()
    if lead is not None:
        return lead, False

    lead = Lead(
        name=data.name,
        email=data.email,
        phone=data.phone,
        company=data.company,
        source='website',
        priority='medium',
        status='new',
        property_id=data.unit_id or data.property_id,
    )
    db.add(lead)
    db.flush()
    return lead, True


@router.get('/availability', response_model=PublicAvailabilityResponse)
def get_public_availability(
    property_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    duration: int = Query(default=config.DEFAULT_BOOKING_DURATION_MINUTES, ge=1, le=24 * 60),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    slots = generate_slots(AvailabilityStore(db), property_id, slot_date, duration)
    return PublicAvailabilityResponse(
        property_id=property_id,
        date=slot_date,
        duration_minutes=duration,
        slots=[PublicSlotResponse(start_time=slot.start, end_time=slot.end) for slot in slots],
    )


@router.post('', response_model=PublicAppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_public_appointment(
    data: PublicAppointmentRequest,
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
):
    ensure_database_ready()

    end_time = data.end_time or data.start_time + timedelta(minutes=config.DEFAULT_BOOKING_DURATION_MINUTES)

    try:
        lead, lead_created = find_or_create_lead(db, data)
        booked_property = db.get(Property, data.unit_id or data.property_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    property_name = booked_property.name if booked_property is not None else None
    request = BookingRequest(
        property_id=data.property_id,
        unit_id=data.unit_id,
        lead_id=lead.id,
        title=f'Property Tour - {data.name}',
        description=data.notes,
        start_time=data.start_time,
        end_time=end_time,
        location=booked_property.address if booked_property is not None else None,
        attendees=[data.email],
    )

    with booking_errors():
        appointment = book_appointment(db, request)

    if lead_created:
        schedule_lead_notification(db, lead)
    send_appointment_request_notice(db, appointment, sender, property_name=property_name)

    logger.info('Public booking %s created for lead %s', appointment.id, appointment.lead_id)
    return appointment
