"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Index, Integer, Time
from sqlalchemy.orm import relationship
from queuecare.database import Base


class DoctorAvailability(Base):
    """One bookable slot published for a doctor on a date."""
    __tablename__ = "doctor_availability"
    __table_args__ = (
        Index("uq_doctor_availability_slot", "doctor_id", "date", "start_time", unique=True),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    doctor = relationship("Doctor", back_populates="availability")
