from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from queuecare.auth.dependencies import get_session_context
from queuecare.auth.session import SessionContext
from queuecare.core.errors import NotFound
from queuecare.database import database_guard, get_db
from queuecare.models.doctor import Doctor
from queuecare.schemas import AvailabilitySlotResponse, DoctorResponse
from queuecare.services.availability import read_availability

router = APIRouter(tags=['doctors'])


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    specialty: str | None = Query(default=None),
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    del session

    with database_guard(db, 'list doctors'):
        query = db.query(Doctor)
        if specialty and specialty.strip():
            query = query.filter(Doctor.specialty.ilike(specialty.strip()))
        return query.order_by(Doctor.id.asc()).all()


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(
    doctor_id: int,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    del session

    with database_guard(db, 'load doctor'):
        doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound('Doctor not found.')
    return doctor


@router.get('/{doctor_id}/availability', response_model=list[AvailabilitySlotResponse])
def get_doctor_availability(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    del session
    return read_availability(db, doctor_id, slot_date)
