"""Response shapes shared by the route modules."""

from datetime import date, datetime, time

from pydantic import BaseModel, field_validator

from queuecare.services.availability import normalize_slot_label


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone: str | None = None
    role: str
    date_of_birth: date | None = None
    address: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class DoctorResponse(BaseModel):
    id: int
    user_id: int
    specialty: str
    experience: str
    education: str
    bio: str
    created_at: datetime
    user: UserResponse

    class Config:
        from_attributes = True


class AvailabilitySlotResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    start_time: str
    end_time: str
    is_available: bool

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def label_time(cls, value: str | time) -> str:
        return normalize_slot_label(value)

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_time: datetime
    status: str
    service_type: str | None = None
    notes: str | None = None
    created_at: datetime
    patient: UserResponse
    doctor: DoctorResponse
    can_cancel: bool = False

    class Config:
        from_attributes = True


class ServiceCategoryResponse(BaseModel):
    id: int
    name: str
    description: str
    slot_duration: int
    buffer_time: int

    class Config:
        from_attributes = True
