import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from crm.scheduling.blocked_dates import check_blocked_date
from crm.scheduling.calendar_config import (
    CalendarConfig,
    WindowStatus,
    day_of_week,
    minutes_since_midnight,
    resolve_calendar,
)
from crm.scheduling.conflicts import check_conflicts
from crm.scheduling.store import AvailabilityStore

logger = logging.getLogger(__name__)

REASON_CALENDAR_INACTIVE = 'calendar inactive'
REASON_NO_HOURS = 'no business hours this day'
REASON_ALREADY_BOOKED = 'time slot already booked'
REASON_INVALID_RANGE = 'end time must be after start time'


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None


AVAILABLE = AvailabilityResult(available=True)


def require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f'{name} must include a timezone offset.')
    return value


def blocked_reason(stored_reason: str | None) -> str:
    if stored_reason:
        return f'Date is blocked: {stored_reason}'
    return 'Date is blocked'


def outside_hours_reason(window_description: str) -> str:
    return f'outside business hours ({window_description})'


def _local_minutes(calendar: CalendarConfig, start: datetime, end: datetime) -> tuple[int, int]:
    local_start = calendar.to_local(start)
    local_midnight = local_start.replace(hour=0, minute=0, second=0, microsecond=0)
    start_minutes = minutes_since_midnight(local_start.time())
    # Partial minutes on the end round up so 17:00:30 counts as past a 17:00 close.
    end_minutes = math.ceil((calendar.to_local(end) - local_midnight) / timedelta(minutes=1))
    return start_minutes, end_minutes


def _evaluate(
    store: AvailabilityStore,
    property_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None,
) -> AvailabilityResult:
    calendar_result = resolve_calendar(store, property_id)
    if not calendar_result.ok:
        logger.warning('Calendar lookup for property %s failed; allowing booking', property_id)
        return AVAILABLE

    calendar = calendar_result.value
    if not calendar.exists:
        return AVAILABLE

    if not calendar.is_active:
        return AvailabilityResult(available=False, reason=REASON_CALENDAR_INACTIVE)

    local_start = calendar.to_local(start)

    blocked_result = check_blocked_date(store, calendar.property_id, local_start.date())
    if not blocked_result.ok:
        logger.warning('Blocked-date lookup for property %s failed; allowing booking', property_id)
        return AVAILABLE
    if blocked_result.value.blocked:
        return AvailabilityResult(available=False, reason=blocked_reason(blocked_result.value.reason))

    window_status, window = calendar.window_for(day_of_week(local_start.date()))
    if window_status is not WindowStatus.OPEN:
        return AvailabilityResult(available=False, reason=REASON_NO_HOURS)

    start_minutes, end_minutes = _local_minutes(calendar, start, end)
    if start_minutes < window.start_minutes or end_minutes > window.end_minutes:
        return AvailabilityResult(available=False, reason=outside_hours_reason(window.describe()))

    conflicts = check_conflicts(store, calendar.property_id, start, end, exclude_appointment_id)
    if conflicts.conflict:
        return AvailabilityResult(available=False, reason=REASON_ALREADY_BOOKED)

    return AVAILABLE


def evaluate(
    store: AvailabilityStore,
    property_id: int,
    start: datetime,
    end: datetime,
    exclude_appointment_id: int | None = None,
) -> AvailabilityResult:
    """Decide whether [start, end) can be booked for ``property_id``.

    Checks run in order and stop at the first rejection: calendar presence,
    calendar active flag, blocked date, weekday window, window bounds and
    finally conflicting appointments. A property without a calendar accepts
    any interval. Store failures and unexpected errors return available so
    that an outage never blocks a legitimate booking; the write path is
    responsible for the final guarantee.
    """
    require_aware(start, 'start')
    require_aware(end, 'end')
    if end <= start:
        return AvailabilityResult(available=False, reason=REASON_INVALID_RANGE)

    try:
        return _evaluate(store, property_id, start, end, exclude_appointment_id)
    except Exception:
        logger.exception('Availability evaluation failed for property %s; allowing booking', property_id)
        return AVAILABLE
