"""Appointment model definitions."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text, text

from crm.database import Base
from crm.models.types import UTCDateTime, utcnow


SLOT_UNIQUE_INDEX = "uq_appointments_property_start_active"

APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'completed', 'cancelled')


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            SLOT_UNIQUE_INDEX,
            "property_id",
            "start_time",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    unit_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    location = Column(String)
    attendees = Column(JSON, default=list)
    status = Column(String, default="scheduled", nullable=False)
    reminder_24h_sent = Column(Boolean, default=False, nullable=False)
    reminder_2h_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
