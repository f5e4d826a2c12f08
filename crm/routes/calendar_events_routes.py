from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.auth.dependencies import require_admin
from crm.database import get_db
from crm.models.appointment import Appointment
from crm.models.user import User
from crm.routes.appointments_routes import AppointmentResponse, CreateAppointmentRequest
from crm.routes.common import booking_errors, database_unavailable, ensure_database_ready, validate_aware
from crm.scheduling.booking import AppointmentChanges, book_appointment, cancel_appointment, reschedule_appointment
from crm.scheduling.store import CANCELLED_STATUS
from crm.services.notifications import NotificationSender, get_notification_sender

router = APIRouter(tags=['calendar-events'])


class UpdateEventRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    attendees: list[str] | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime | None) -> datetime | None:
        return None if value is None else validate_aware(value)

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

    def to_changes(self) -> AppointmentChanges:
        return AppointmentChanges(
            title=self.title.strip() if self.title else None,
            description=self.description,
            start_time=self.start_time,
            end_time=self.end_time,
            location=self.location,
            attendees=self.attendees,
        )


@router.get('', response_model=list[AppointmentResponse])
def list_events(
    start: datetime = Query(...),
    end: datetime = Query(...),
    property_id: int | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        validate_aware(start)
        validate_aware(end)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='End must be after start.')

    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(
            Appointment.start_time < end,
            Appointment.end_time > start,
        )
        if property_id is not None:
            query = query.filter(Appointment.property_id == property_id)
        if not include_cancelled:
            query = query.filter(Appointment.status != CANCELLED_STATUS)
        return query.order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return book_appointment(db, data.to_booking_request())


@router.put('/{event_id}', response_model=AppointmentResponse)
def update_event(
    event_id: int,
    data: UpdateEventRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return reschedule_appointment(db, event_id, data.to_changes())


@router.delete('/{event_id}', response_model=AppointmentResponse)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    with booking_errors():
        return cancel_appointment(db, event_id, sender)
