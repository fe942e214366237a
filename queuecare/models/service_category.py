"""Service catalog model definitions."""

from sqlalchemy import Column, Integer, String
from queuecare.database import Base


class ServiceCategory(Base):
    """A bookable kind of consultation with its slot length and buffer, in minutes."""
    __tablename__ = "service_categories"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=False, default="")
    slot_duration = Column(Integer, nullable=False)
    buffer_time = Column(Integer, nullable=False, default=0)
