"""Notification queue model definitions."""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text

from crm.database import Base
from crm.models.types import UTCDateTime, utcnow


class NotificationQueueItem(Base):
    """One outbound notification waiting for, or already past, delivery."""
    __tablename__ = "notification_queue"

    id = Column(Integer, primary_key=True)
    type = Column(String, nullable=False)
    recipient_email = Column(String)
    recipient_phone = Column(String)
    recipient_name = Column(String)
    scheduled_for = Column(UTCDateTime, nullable=False, index=True)
    data = Column(JSON, default=dict)
    status = Column(String, default="pending", nullable=False)  # pending/processing/sent/failed
    reminder_type = Column(String)  # 24h/2h/immediate
    appointment_id = Column(Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_attempt = Column(UTCDateTime)
    error_message = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
