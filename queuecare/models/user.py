"""User profile model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String
from queuecare.database import Base

ROLES = ('patient', 'doctor', 'receptionist', 'admin')
STAFF_ROLES = ('receptionist', 'admin')


class User(Base):
    """Represents an application user and their profile."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="")
    phone = Column(String)
    role = Column(String, nullable=False, default="patient")  # see ROLES
    date_of_birth = Column(Date)
    address = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
