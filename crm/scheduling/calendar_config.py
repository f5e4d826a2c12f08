import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crm.core import config
from crm.scheduling.store import AvailabilityStore, StoreResult

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7
MINUTES_PER_DAY = 24 * 60


class WindowStatus(str, Enum):
    OPEN = 'open'
    MISSING = 'missing'
    CLOSED = 'closed'


@dataclass(frozen=True)
class BusinessWindow:
    day_of_week: int
    start: time
    end: time
    is_active: bool = True
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES

    @property
    def start_minutes(self) -> int:
        return minutes_since_midnight(self.start)

    @property
    def end_minutes(self) -> int:
        return minutes_since_midnight(self.end)

    def describe(self) -> str:
        return f'{format_12_hour(self.start)} - {format_12_hour(self.end)}'


@dataclass(frozen=True)
class WeeklySchedule:
    """One optional window per weekday, indexed 0=Sunday..6=Saturday."""

    windows: tuple[BusinessWindow | None, ...] = (None,) * DAYS_PER_WEEK

    @classmethod
    def from_rows(cls, rows) -> 'WeeklySchedule':
        windows: list[BusinessWindow | None] = [None] * DAYS_PER_WEEK
        for row in rows:
            if not 0 <= row.day_of_week < DAYS_PER_WEEK:
                logger.warning('Ignoring availability row %s with day_of_week=%s', row.id, row.day_of_week)
                continue
            windows[row.day_of_week] = BusinessWindow(
                day_of_week=row.day_of_week,
                start=row.start_time,
                end=row.end_time,
                is_active=bool(row.is_active),
                slot_duration=row.slot_duration or config.DEFAULT_SLOT_DURATION_MINUTES,
            )
        return cls(windows=tuple(windows))

    def __getitem__(self, day_of_week: int) -> BusinessWindow | None:
        return self.windows[day_of_week]


@dataclass(frozen=True)
class CalendarConfig:
    property_id: int
    exists: bool
    is_active: bool = False
    timezone: ZoneInfo = field(default_factory=lambda: load_timezone(None))
    schedule: WeeklySchedule = field(default_factory=WeeklySchedule)

    def window_for(self, day_of_week: int) -> tuple[WindowStatus, BusinessWindow | None]:
        window = self.schedule[day_of_week]
        if window is None:
            return WindowStatus.MISSING, None
        if not window.is_active:
            return WindowStatus.CLOSED, window
        return WindowStatus.OPEN, window

    def to_local(self, instant: datetime) -> datetime:
        return instant.astimezone(self.timezone)


def load_timezone(name: str | None) -> ZoneInfo:
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning('Unknown timezone %r, falling back to %s', name, config.DEFAULT_TIMEZONE)
    return ZoneInfo(config.DEFAULT_TIMEZONE)


def day_of_week(day: date) -> int:
    """Sunday-based weekday index used by calendar_availability."""
    return (day.weekday() + 1) % DAYS_PER_WEEK


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def format_12_hour(value: time) -> str:
    hour = value.hour % 12 or 12
    suffix = 'AM' if value.hour < 12 else 'PM'
    return f'{hour}:{value.minute:02d} {suffix}'


def resolve_calendar(store: AvailabilityStore, property_id: int) -> StoreResult[CalendarConfig]:
    """Load the calendar governing ``property_id`` (a unit uses its building's calendar)."""
    calendar_property = store.resolve_calendar_property_id(property_id)
    if not calendar_property.ok:
        return StoreResult(error=calendar_property.error)
    calendar_property_id = calendar_property.value

    calendar_result = store.get_calendar(calendar_property_id)
    if not calendar_result.ok:
        return StoreResult(error=calendar_result.error)

    calendar = calendar_result.value
    if calendar is None:
        return StoreResult(value=CalendarConfig(property_id=calendar_property_id, exists=False))

    windows_result = store.get_weekly_windows(calendar_property_id)
    if not windows_result.ok:
        return StoreResult(error=windows_result.error)

    return StoreResult(value=CalendarConfig(
        property_id=calendar_property_id,
        exists=True,
        is_active=bool(calendar.is_active),
        timezone=load_timezone(calendar.timezone),
        schedule=WeeklySchedule.from_rows(windows_result.value),
    ))
