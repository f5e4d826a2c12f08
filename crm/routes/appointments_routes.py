from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.auth.dependencies import require_admin
from crm.core import config
from crm.database import get_db
from crm.models.appointment import APPOINTMENT_STATUSES, Appointment
from crm.models.user import User
from crm.routes.common import booking_errors, database_unavailable, ensure_database_ready, validate_aware
from crm.scheduling.booking import BookingRequest, book_appointment, cancel_appointment, update_appointment_status
from crm.services.notifications import NotificationSender, get_notification_sender

router = APIRouter(tags=['appointments'])

MAX_TITLE_LENGTH = 200


class AppointmentResponse(BaseModel):
    id: int
    property_id: int | None = None
    unit_id: int | None = None
    lead_id: int | None = None
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    attendees: list[str] = []
    status: str
    reminder_24h_sent: bool = False
    reminder_2h_sent: bool = False

    class Config:
        from_attributes = True


class CreateAppointmentRequest(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime | None = None
    property_id: int | None = None
    unit_id: int | None = None
    lead_id: int | None = None
    description: str | None = None
    location: str | None = None
    attendees: list[str] = []

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        if len(normalized) > MAX_TITLE_LENGTH:
            raise ValueError(f'Title must be {MAX_TITLE_LENGTH} characters or fewer.')
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

    @field_validator('attendees')
    @classmethod
    def validate_attendees(cls, value: list[str]) -> list[str]:
        return [attendee.strip().lower() for attendee in value if attendee.strip()]

    def to_booking_request(self) -> BookingRequest:
        end_time = self.end_time or self.start_time + timedelta(minutes=config.DEFAULT_BOOKING_DURATION_MINUTES)
        return BookingRequest(
            property_id=self.property_id,
            unit_id=self.unit_id,
            lead_id=self.lead_id,
            title=self.title,
            description=self.description,
            start_time=self.start_time,
            end_time=end_time,
            location=self.location,
            attendees=self.attendees,
        )


class UpdateAppointmentStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    property_id: int | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment)
        if property_id is not None:
            query = query.filter(Appointment.property_id == property_id)
        if status_filter:
            query = query.filter(Appointment.status == status_filter.strip().lower())
        return query.order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return book_appointment(db, data.to_booking_request())


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return update_appointment_status(db, appointment_id, data.status, sender)


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return cancel_appointment(db, appointment_id, sender)


def _appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')
    return appointment


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        return _appointment_or_404(db, appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
