"""Lead model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer, String

from crm.database import Base
from crm.models.types import UTCDateTime, utcnow


class Lead(Base):
    """A prospective tenant or buyer tracked in the pipeline."""
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, index=True)
    phone = Column(String)
    company = Column(String)
    source = Column(String, default="website")
    priority = Column(String, default="medium")
    status = Column(String, default="new")
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    consultation_date = Column(Date)
    consultation_time = Column(String)
    created_at = Column(UTCDateTime, default=utcnow)
