from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from queuecare.auth.dependencies import get_session_context
from queuecare.auth.session import SessionContext
from queuecare.core.errors import Forbidden
from queuecare.database import database_guard, get_db
from queuecare.models.appointment import Appointment
from queuecare.schemas import AppointmentResponse
from queuecare.services.booking import (
    MAX_APPOINTMENT_NOTES_LENGTH,
    can_patient_cancel,
    cancel_appointment_for_patient,
    try_book_appointment,
)

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    slot_time: datetime
    patient_id: int | None = None
    service_type: str | None = None
    notes: str | None = None

    @field_validator('service_type')
    @classmethod
    def validate_service_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


def to_appointment_response(appointment: Appointment, now: datetime | None = None) -> AppointmentResponse:
    response = AppointmentResponse.model_validate(appointment)
    response.can_cancel = can_patient_cancel(appointment, now)
    return response


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    patient_id = session.user.id
    if data.patient_id is not None and data.patient_id != session.user.id:
        if not session.is_staff:
            raise Forbidden('Only staff can book appointments for other patients.')
        patient_id = data.patient_id

    outcome = try_book_appointment(
        db,
        patient_id=patient_id,
        doctor_id=data.doctor_id,
        slot_time=data.slot_time,
        service_type=data.service_type,
        notes=data.notes,
    )
    if outcome.error is not None:
        raise outcome.error

    return to_appointment_response(outcome.appointment)


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'list patient appointments'):
        appointments = db.query(Appointment).filter(
            Appointment.patient_id == session.user.id,
        ).order_by(Appointment.slot_time.asc()).all()

    now = datetime.now()
    return [to_appointment_response(appointment, now) for appointment in appointments]


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_my_appointment(
    appointment_id: int,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    appointment = cancel_appointment_for_patient(db, appointment_id, session.user.id)
    return to_appointment_response(appointment)
