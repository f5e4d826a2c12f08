import logging
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy.orm import Session

from crm.core import config
from crm.models.calendar import CalendarAvailability, CalendarBlockedDate, PropertyCalendar
from crm.models.types import utcnow
from crm.scheduling.blocked_dates import DEFAULT_BLOCKED_REASON
from crm.scheduling.calendar_config import DAYS_PER_WEEK, load_timezone

logger = logging.getLogger(__name__)


class CalendarNotFound(LookupError):
    pass


@dataclass
class CalendarDetails:
    calendar: PropertyCalendar
    availability: list[CalendarAvailability]
    blocked_dates: list[CalendarBlockedDate]


def validate_window(day_of_week: int, start_time: time, end_time: time, slot_duration: int) -> None:
    if not 0 <= day_of_week < DAYS_PER_WEEK:
        raise ValueError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')
    if end_time <= start_time:
        raise ValueError('end_time must be after start_time.')
    if slot_duration <= 0:
        raise ValueError('slot_duration must be positive.')


def validate_timezone(name: str) -> str:
    if load_timezone(name).key != name:
        raise ValueError(f'Unknown timezone: {name}')
    return name


def list_calendars(db: Session) -> list[PropertyCalendar]:
    return db.query(PropertyCalendar).order_by(PropertyCalendar.property_id.asc()).all()


def get_calendar(db: Session, property_id: int) -> PropertyCalendar:
    calendar = db.query(PropertyCalendar).filter(PropertyCalendar.property_id == property_id).first()
    if calendar is None:
        raise CalendarNotFound(f'No calendar configured for property {property_id}.')
    return calendar


def get_calendar_details(db: Session, property_id: int) -> CalendarDetails:
    calendar = get_calendar(db, property_id)
    availability = db.query(CalendarAvailability).filter(
        CalendarAvailability.property_id == property_id,
    ).order_by(CalendarAvailability.day_of_week.asc()).all()
    blocked_dates = list_blocked_dates(db, property_id)
    return CalendarDetails(calendar=calendar, availability=availability, blocked_dates=blocked_dates)


def upsert_calendar(
    db: Session,
    property_id: int,
    is_active: bool | None = None,
    timezone_name: str | None = None,
    property_title: str | None = None,
) -> PropertyCalendar:
    calendar = db.query(PropertyCalendar).filter(PropertyCalendar.property_id == property_id).first()
    if calendar is None:
        calendar = PropertyCalendar(
            property_id=property_id,
            is_active=True if is_active is None else is_active,
            timezone=validate_timezone(timezone_name) if timezone_name else config.DEFAULT_TIMEZONE,
            property_title=property_title,
        )
        db.add(calendar)
        logger.info('Created calendar for property %s', property_id)
    else:
        if is_active is not None:
            calendar.is_active = is_active
        if timezone_name:
            calendar.timezone = validate_timezone(timezone_name)
        if property_title is not None:
            calendar.property_title = property_title
        calendar.updated_at = utcnow()

    db.commit()
    db.refresh(calendar)
    return calendar


def upsert_weekday_window(
    db: Session,
    property_id: int,
    day_of_week: int,
    start_time: time,
    end_time: time,
    is_active: bool = True,
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES,
) -> CalendarAvailability:
    validate_window(day_of_week, start_time, end_time, slot_duration)
    get_calendar(db, property_id)

    window = db.query(CalendarAvailability).filter(
        CalendarAvailability.property_id == property_id,
        CalendarAvailability.day_of_week == day_of_week,
    ).first()
    if window is None:
        window = CalendarAvailability(property_id=property_id, day_of_week=day_of_week)
        db.add(window)

    window.start_time = start_time
    window.end_time = end_time
    window.is_active = is_active
    window.slot_duration = slot_duration
    window.updated_at = utcnow()

    db.commit()
    db.refresh(window)
    return window


def list_blocked_dates(db: Session, property_id: int, from_date: date | None = None) -> list[CalendarBlockedDate]:
    query = db.query(CalendarBlockedDate).filter(CalendarBlockedDate.property_id == property_id)
    if from_date is not None:
        query = query.filter(CalendarBlockedDate.blocked_date >= from_date)
    return query.order_by(CalendarBlockedDate.blocked_date.asc(), CalendarBlockedDate.id.asc()).all()


def add_blocked_date(
    db: Session,
    property_id: int,
    blocked_date: date,
    reason: str | None = None,
    all_day: bool = True,
    start_time: time | None = None,
    end_time: time | None = None,
) -> CalendarBlockedDate:
    """Block ``blocked_date``. Partial-day rows keep their times but still block the whole day."""
    if all_day:
        start_time = None
        end_time = None
    elif start_time is None or end_time is None or end_time <= start_time:
        raise ValueError('Partial-day blocks need a start_time before end_time.')

    blocked = CalendarBlockedDate(
        property_id=property_id,
        blocked_date=blocked_date,
        reason=(reason or '').strip() or DEFAULT_BLOCKED_REASON,
        all_day=all_day,
        start_time=start_time,
        end_time=end_time,
    )
    db.add(blocked)
    db.commit()
    db.refresh(blocked)
    logger.info('Blocked %s for property %s', blocked_date.isoformat(), property_id)
    return blocked


def remove_blocked_date(db: Session, property_id: int, blocked_date_id: int) -> bool:
    deleted = db.query(CalendarBlockedDate).filter(
        CalendarBlockedDate.id == blocked_date_id,
        CalendarBlockedDate.property_id == property_id,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0


def delete_calendars(db: Session, property_ids: list[int]) -> int:
    """Delete calendars with their weekday windows and blocked dates."""
    if not property_ids:
        return 0

    db.query(CalendarAvailability).filter(
        CalendarAvailability.property_id.in_(property_ids),
    ).delete(synchronize_session=False)
    db.query(CalendarBlockedDate).filter(
        CalendarBlockedDate.property_id.in_(property_ids),
    ).delete(synchronize_session=False)
    deleted = db.query(PropertyCalendar).filter(
        PropertyCalendar.property_id.in_(property_ids),
    ).delete(synchronize_session=False)
    db.commit()

    logger.info('Deleted %s calendars', deleted)
    return deleted
