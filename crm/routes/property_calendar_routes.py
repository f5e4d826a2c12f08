from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm.auth.dependencies import require_admin
from crm.core import config
from crm.database import get_db
from crm.models.user import User
from crm.routes.common import database_unavailable, ensure_database_ready, validate_aware
from crm.scheduling.evaluator import evaluate
from crm.scheduling.slots import generate_slots
from crm.scheduling.store import AvailabilityStore
from crm.services import calendar_service
from crm.services.calendar_service import CalendarNotFound

router = APIRouter(tags=['property-calendars'])

MAX_REASON_LENGTH = 200


class CalendarResponse(BaseModel):
    id: int
    property_id: int
    property_title: str | None = None
    is_active: bool
    timezone: str

    class Config:
        from_attributes = True


class WindowResponse(BaseModel):
    id: int
    property_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool
    slot_duration: int

    class Config:
        from_attributes = True


class BlockedDateResponse(BaseModel):
    id: int
    property_id: int
    blocked_date: date
    reason: str | None = None
    all_day: bool
    start_time: time | None = None
    end_time: time | None = None

    class Config:
        from_attributes = True


class CalendarDetailsResponse(BaseModel):
    calendar: CalendarResponse
    availability: list[WindowResponse]
    blocked_dates: list[BlockedDateResponse]

    class Config:
        from_attributes = True


class UpsertCalendarRequest(BaseModel):
    is_active: bool | None = None
    timezone: str | None = None
    property_title: str | None = None


class UpsertWindowRequest(BaseModel):
    start_time: time
    end_time: time
    is_active: bool = True
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES


class CreateBlockedDateRequest(BaseModel):
    blocked_date: date
    reason: str | None = None
    all_day: bool = True
    start_time: time | None = None
    end_time: time | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized or None


class DeleteCalendarsRequest(BaseModel):
    property_ids: list[int]


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class AvailabilityCheckResponse(BaseModel):
    available: bool
    reason: str | None = None


def _not_found(exc: CalendarNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get('', response_model=list[CalendarResponse])
def list_calendars(db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    ensure_database_ready()

    try:
        return calendar_service.list_calendars(db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('')
def delete_calendars(
    data: DeleteCalendarsRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        deleted = calendar_service.delete_calendars(db, data.property_ids)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
    return {'deleted': deleted}


@router.get('/{property_id}', response_model=CalendarDetailsResponse)
def get_calendar(property_id: int, db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    ensure_database_ready()

    try:
        return calendar_service.get_calendar_details(db, property_id)
    except CalendarNotFound as exc:
        raise _not_found(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{property_id}', response_model=CalendarResponse)
def upsert_calendar(
    property_id: int,
    data: UpsertCalendarRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        return calendar_service.upsert_calendar(
            db,
            property_id,
            is_active=data.is_active,
            timezone_name=data.timezone,
            property_title=data.property_title,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{property_id}/availability/{day_of_week}', response_model=WindowResponse)
def upsert_weekday_window(
    property_id: int,
    day_of_week: int,
    data: UpsertWindowRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        return calendar_service.upsert_weekday_window(
            db,
            property_id,
            day_of_week,
            data.start_time,
            data.end_time,
            is_active=data.is_active,
            slot_duration=data.slot_duration,
        )
    except CalendarNotFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise _bad_request(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{property_id}/blocked-dates', response_model=list[BlockedDateResponse])
def list_blocked_dates(
    property_id: int,
    from_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        return calendar_service.list_blocked_dates(db, property_id, from_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/{property_id}/blocked-dates',
    response_model=BlockedDateResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_blocked_date(
    property_id: int,
    data: CreateBlockedDateRequest,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        return calendar_service.add_blocked_date(
            db,
            property_id,
            data.blocked_date,
            reason=data.reason,
            all_day=data.all_day,
            start_time=data.start_time,
            end_time=data.end_time,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{property_id}/blocked-dates/{blocked_date_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_date(
    property_id: int,
    blocked_date_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    try:
        removed = calendar_service.remove_blocked_date(db, property_id, blocked_date_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Blocked date not found.')


@router.get('/{property_id}/slots', response_model=list[SlotResponse])
def list_slots(
    property_id: int,
    slot_date: date = Query(..., alias='date'),
    duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=24 * 60),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    ensure_database_ready()

    slots = generate_slots(AvailabilityStore(db), property_id, slot_date, duration)
    return [SlotResponse(start_time=slot.start, end_time=slot.end) for slot in slots]


@router.get('/{property_id}/check', response_model=AvailabilityCheckResponse)
def check_availability(
    property_id: int,
    start: datetime = Query(...),
    end: datetime = Query(...),
    exclude_appointment_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        validate_aware(start)
        validate_aware(end)
    except ValueError as exc:
        raise _bad_request(exc) from exc

    ensure_database_ready()

    result = evaluate(AvailabilityStore(db), property_id, start, end, exclude_appointment_id)
    return AvailabilityCheckResponse(available=result.available, reason=result.reason)
