"""Property model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from crm.database import Base


class Property(Base):
    """A listed property; units of a multi-unit building point at their parent."""
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True)
    name = Column(String)
    address = Column(String)
    parent_property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
