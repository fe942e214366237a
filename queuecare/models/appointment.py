"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from queuecare.database import ACTIVE_STATUS_SQL, Base

APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')


class Appointment(Base):
    """Represents a booked consultation; rows are never deleted, only re-statused."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active appointment per doctor and slot.
        Index(
            "uq_appointments_doctor_slot_active",
            "doctor_id",
            "slot_time",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index("idx_appointments_patient_slot", "patient_id", "slot_time"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    slot_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="scheduled")
    service_type = Column(String)
    notes = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    patient = relationship("User", lazy="joined", innerjoin=True)
    doctor = relationship("Doctor", lazy="joined", innerjoin=True)
