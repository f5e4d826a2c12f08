import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator

from crm.core import config
from crm.scheduling.blocked_dates import check_blocked_date
from crm.scheduling.calendar_config import BusinessWindow, WindowStatus, day_of_week, resolve_calendar
from crm.scheduling.conflicts import intervals_overlap
from crm.scheduling.store import AvailabilityStore

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime


def iter_candidate_slots(day: date, window: BusinessWindow, tz, duration_minutes: int) -> Iterator[TimeSlot]:
    """Yield slots of ``duration_minutes`` every 30 minutes that fit inside ``window``.

    Local wall-clock times are converted to UTC individually, so a DST
    change during the day shifts the instants rather than the business hours.
    """
    minutes = window.start_minutes
    while minutes + duration_minutes <= window.end_minutes:
        local_start = datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz)
        start = local_start.astimezone(timezone.utc)
        minutes += SLOT_STEP_MINUTES
        if start.astimezone(tz).replace(tzinfo=None) != local_start.replace(tzinfo=None):
            # Wall time skipped by a spring-forward transition.
            continue
        yield TimeSlot(start=start, end=start + timedelta(minutes=duration_minutes))


def iter_slots(
    store: AvailabilityStore,
    property_id: int,
    day: date,
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
) -> Iterator[TimeSlot]:
    if duration_minutes <= 0:
        raise ValueError('duration_minutes must be positive.')

    calendar_result = resolve_calendar(store, property_id)
    if not calendar_result.ok:
        logger.warning('Calendar lookup for property %s failed; no slots offered', property_id)
        return
    calendar = calendar_result.value
    if not calendar.exists or not calendar.is_active:
        return

    window_status, window = calendar.window_for(day_of_week(day))
    if window_status is not WindowStatus.OPEN:
        return

    blocked_result = check_blocked_date(store, calendar.property_id, day)
    if not blocked_result.ok:
        logger.warning('Blocked-date lookup for property %s failed; no slots offered', property_id)
        return
    if blocked_result.value.blocked:
        return

    day_start = datetime.combine(day, time.min, tzinfo=calendar.timezone).astimezone(timezone.utc)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=calendar.timezone).astimezone(timezone.utc)
    appointments_result = store.find_overlapping_appointments(calendar.property_id, day_start, day_end)
    if not appointments_result.ok:
        logger.warning('Appointment lookup for property %s failed; no slots offered', property_id)
        return
    booked = [(appointment.start_time, appointment.end_time) for appointment in appointments_result.value]

    for slot in iter_candidate_slots(day, window, calendar.timezone, duration_minutes):
        if any(intervals_overlap(slot.start, slot.end, booked_start, booked_end) for booked_start, booked_end in booked):
            continue
        yield slot


def generate_slots(
    store: AvailabilityStore,
    property_id: int,
    day: date,
    duration_minutes: int = config.DEFAULT_SLOT_DURATION_MINUTES,
) -> list[TimeSlot]:
    """Bookable slots for ``property_id`` on local date ``day``, ascending by start."""
    try:
        return list(iter_slots(store, property_id, day, duration_minutes))
    except ValueError:
        raise
    except Exception:
        logger.exception('Slot generation failed for property %s on %s', property_id, day.isoformat())
        return []
