"""Doctor model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from queuecare.database import Base


class Doctor(Base):
    """A doctor, linked one-to-one to the user profile holding name and contact data."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    specialty = Column(String, nullable=False)
    experience = Column(String, nullable=False, default="")
    education = Column(String, nullable=False, default="")
    bio = Column(String, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    user = relationship("User", lazy="joined", innerjoin=True)
    availability = relationship(
        "DoctorAvailability",
        back_populates="doctor",
        cascade="all, delete-orphan",
    )
