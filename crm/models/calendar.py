"""Property calendar model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time, UniqueConstraint

from crm.core import config
from crm.database import Base
from crm.models.types import UTCDateTime, utcnow


class PropertyCalendar(Base):
    """Scheduling configuration for a single property."""
    __tablename__ = "property_calendars"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), unique=True, nullable=False)
    property_title = Column(String)
    is_active = Column(Boolean, default=True, nullable=False)
    timezone = Column(String, default=config.DEFAULT_TIMEZONE, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class CalendarAvailability(Base):
    """Business hours for one weekday (0=Sunday..6=Saturday)."""
    __tablename__ = "calendar_availability"
    __table_args__ = (
        UniqueConstraint("property_id", "day_of_week", name="uq_calendar_availability_property_day"),
    )

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("property_calendars.property_id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    slot_duration = Column(Integer, default=config.DEFAULT_SLOT_DURATION_MINUTES, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


class CalendarBlockedDate(Base):
    """A date removed from booking for a property."""
    __tablename__ = "calendar_blocked_dates"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, nullable=False, index=True)
    blocked_date = Column(Date, nullable=False)
    reason = Column(String, default="Blocked")
    all_day = Column(Boolean, default=True, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
