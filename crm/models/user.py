"""User model definitions."""

from sqlalchemy import Column, Integer, String
from crm.database import Base


class User(Base):
    """Represents a CRM operator known to the external auth provider."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String)  # admin/agent
