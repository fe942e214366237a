import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from queuecare.auth.dependencies import require_admin, require_staff
from queuecare.auth.passwords import MAX_PASSWORD_BYTES, hash_password
from queuecare.auth.session import SessionContext
from queuecare.core import config
from queuecare.core.errors import Conflict, NotFound
from queuecare.database import database_guard, get_db
from queuecare.models.appointment import Appointment
from queuecare.models.doctor import Doctor
from queuecare.models.service_category import ServiceCategory
from queuecare.models.user import User
from queuecare.routes.auth_routes import normalize_email
from queuecare.schemas import (
    AppointmentResponse,
    AvailabilitySlotResponse,
    DoctorResponse,
    ServiceCategoryResponse,
    UserResponse,
)
from queuecare.services.availability import CandidateSlot, list_availability_range, publish_availability
from queuecare.services.booking import update_appointment_status

router = APIRouter(tags=['admin'])

logger = logging.getLogger(__name__)


class DoctorRequest(BaseModel):
    name: str
    email: str
    phone: str | None = None
    specialty: str
    experience: str = ''
    education: str = ''
    bio: str = ''
    password: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('name', 'specialty')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str | None) -> str | None:
        if value is not None and len(value.encode()) > MAX_PASSWORD_BYTES:
            raise ValueError(f'Password must be at most {MAX_PASSWORD_BYTES} bytes.')
        return value or None


class PatientRequest(BaseModel):
    name: str
    email: str
    phone: str | None = None
    date_of_birth: date | None = None
    address: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized


class SlotRequest(BaseModel):
    start_time: str
    end_time: str
    is_available: bool = True


class PublishAvailabilityRequest(BaseModel):
    slots: list[SlotRequest]


class UpdateStatusRequest(BaseModel):
    status: str


class ServiceCategoryRequest(BaseModel):
    name: str
    description: str = ''
    slot_duration: int
    buffer_time: int = 0

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('slot_duration')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Slot duration must be positive.')
        return value

    @field_validator('buffer_time')
    @classmethod
    def validate_buffer_time(cls, value: int) -> int:
        if value < 0:
            raise ValueError('Buffer time cannot be negative.')
        return value


class SystemStatsResponse(BaseModel):
    total_users: int
    total_doctors: int
    total_patients: int
    total_appointments: int
    appointments_this_month: int
    revenue_this_month: int


def ensure_email_available(db: Session, email: str, user_id: int | None = None) -> None:
    query = db.query(User).filter(User.email == email)
    if user_id is not None:
        query = query.filter(User.id != user_id)
    if query.first():
        raise Conflict('An account with this email already exists.')


def get_doctor_or_404(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound('Doctor not found.')
    return doctor


def get_patient_or_404(db: Session, patient_id: int) -> User:
    patient = db.get(User, patient_id)
    if patient is None or patient.role != 'patient':
        raise NotFound('Patient not found.')
    return patient


# Doctors

@router.get('/doctors', response_model=list[DoctorResponse])
def list_doctors(session: SessionContext = Depends(require_admin), db: Session = Depends(get_db)):
    with database_guard(db, 'list doctors'):
        return db.query(Doctor).order_by(Doctor.created_at.desc(), Doctor.id.desc()).all()


@router.get('/doctors/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, session: SessionContext = Depends(require_admin), db: Session = Depends(get_db)):
    with database_guard(db, 'load doctor'):
        return get_doctor_or_404(db, doctor_id)


@router.post('/doctors', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: DoctorRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'create doctor'):
        ensure_email_available(db, data.email)

        user = User(
            email=data.email,
            hashed_password=hash_password(data.password) if data.password else '',
            name=data.name,
            phone=data.phone,
            role='doctor',
        )
        doctor = Doctor(
            user=user,
            specialty=data.specialty,
            experience=data.experience,
            education=data.education,
            bio=data.bio,
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)

    logger.info('Admin %s created doctor %s', session.user.id, doctor.id)
    return doctor


@router.put('/doctors/{doctor_id}', response_model=DoctorResponse)
def update_doctor(
    doctor_id: int,
    data: DoctorRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'update doctor'):
        doctor = get_doctor_or_404(db, doctor_id)
        ensure_email_available(db, data.email, user_id=doctor.user_id)

        doctor.user.name = data.name
        doctor.user.email = data.email
        doctor.user.phone = data.phone
        if data.password:
            doctor.user.hashed_password = hash_password(data.password)
        doctor.specialty = data.specialty
        doctor.experience = data.experience
        doctor.education = data.education
        doctor.bio = data.bio
        db.commit()
        db.refresh(doctor)

    logger.info('Admin %s updated doctor %s', session.user.id, doctor.id)
    return doctor


@router.delete('/doctors/{doctor_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor(
    doctor_id: int,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'delete doctor'):
        doctor = get_doctor_or_404(db, doctor_id)

        has_appointments = db.query(Appointment.id).filter(Appointment.doctor_id == doctor_id).first()
        if has_appointments:
            raise Conflict('Doctors with appointments cannot be deleted.')

        user = doctor.user
        db.delete(doctor)
        db.flush()
        db.delete(user)
        db.commit()

    logger.info('Admin %s deleted doctor %s', session.user.id, doctor_id)


# Availability

@router.put('/doctors/{doctor_id}/availability/{slot_date}', response_model=list[AvailabilitySlotResponse])
def set_doctor_availability(
    doctor_id: int,
    slot_date: date,
    data: PublishAvailabilityRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    candidates = [
        CandidateSlot(start_time=slot.start_time, end_time=slot.end_time, is_available=slot.is_available)
        for slot in data.slots
    ]
    return publish_availability(db, doctor_id, slot_date, candidates)


@router.get('/doctors/{doctor_id}/availability', response_model=list[AvailabilitySlotResponse])
def get_doctor_availability(
    doctor_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_availability_range(db, doctor_id, start_date, end_date)


# Patients

@router.get('/patients', response_model=list[UserResponse])
def list_patients(session: SessionContext = Depends(require_admin), db: Session = Depends(get_db)):
    with database_guard(db, 'list patients'):
        return db.query(User).filter(
            User.role == 'patient',
        ).order_by(User.created_at.desc(), User.id.desc()).all()


@router.post('/patients', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def add_patient(
    data: PatientRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'add patient'):
        ensure_email_available(db, data.email)

        patient = User(
            email=data.email,
            hashed_password='',
            name=data.name,
            phone=data.phone,
            date_of_birth=data.date_of_birth,
            address=data.address,
            role='patient',
        )
        db.add(patient)
        db.commit()
        db.refresh(patient)

    logger.info('Admin %s added patient %s', session.user.id, patient.id)
    return patient


@router.put('/patients/{patient_id}', response_model=UserResponse)
def update_patient(
    patient_id: int,
    data: PatientRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'update patient'):
        patient = get_patient_or_404(db, patient_id)
        ensure_email_available(db, data.email, user_id=patient.id)

        patient.name = data.name
        patient.email = data.email
        patient.phone = data.phone
        patient.date_of_birth = data.date_of_birth
        patient.address = data.address
        db.commit()
        db.refresh(patient)

    return patient


@router.delete('/patients/{patient_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(
    patient_id: int,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'delete patient'):
        patient = get_patient_or_404(db, patient_id)

        has_appointments = db.query(Appointment.id).filter(Appointment.patient_id == patient_id).first()
        if has_appointments:
            raise Conflict('Patients with appointments cannot be deleted.')

        db.delete(patient)
        db.commit()

    logger.info('Admin %s deleted patient %s', session.user.id, patient_id)


# Appointments

@router.get('/appointments', response_model=list[AppointmentResponse])
def list_appointments(session: SessionContext = Depends(require_staff), db: Session = Depends(get_db)):
    with database_guard(db, 'list appointments'):
        return db.query(Appointment).order_by(Appointment.slot_time.desc()).all()


@router.get('/appointments/pending', response_model=list[AppointmentResponse])
def list_pending_appointments(session: SessionContext = Depends(require_staff), db: Session = Depends(get_db)):
    with database_guard(db, 'list pending appointments'):
        return db.query(Appointment).filter(
            Appointment.status == 'scheduled',
        ).order_by(Appointment.slot_time.asc()).all()


@router.patch('/appointments/{appointment_id}/status', response_model=AppointmentResponse)
def set_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    session: SessionContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    appointment = update_appointment_status(db, appointment_id, data.status)
    logger.info('Staff %s set appointment %s to %s', session.user.id, appointment_id, appointment.status)
    return appointment


# Service catalog

@router.get('/service-categories', response_model=list[ServiceCategoryResponse])
def list_service_categories(session: SessionContext = Depends(require_admin), db: Session = Depends(get_db)):
    with database_guard(db, 'list service categories'):
        return db.query(ServiceCategory).order_by(ServiceCategory.name.asc()).all()


@router.post('/service-categories', response_model=ServiceCategoryResponse, status_code=status.HTTP_201_CREATED)
def create_service_category(
    data: ServiceCategoryRequest,
    session: SessionContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'create service category'):
        existing = db.query(ServiceCategory).filter(ServiceCategory.name == data.name).first()
        if existing:
            raise Conflict('A service category with this name already exists.')

        category = ServiceCategory(
            name=data.name,
            description=data.description.strip(),
            slot_duration=data.slot_duration,
            buffer_time=data.buffer_time,
        )
        db.add(category)
        db.commit()
        db.refresh(category)

    return category


# Statistics

def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    month_start = datetime(now.year, now.month, 1)
    if now.month == 12:
        return month_start, datetime(now.year + 1, 1, 1)
    return month_start, datetime(now.year, now.month + 1, 1)


def compute_system_stats(db: Session, now: datetime | None = None) -> SystemStatsResponse:
    month_start, month_end = month_bounds(now or datetime.now())

    with database_guard(db, 'compute system statistics'):
        total_doctors = db.query(Doctor).count()
        total_patients = db.query(User).filter(User.role == 'patient').count()
        total_appointments = db.query(Appointment).count()
        appointments_this_month = db.query(Appointment).filter(
            Appointment.slot_time >= month_start,
            Appointment.slot_time < month_end,
        ).count()

    return SystemStatsResponse(
        total_users=total_doctors + total_patients,
        total_doctors=total_doctors,
        total_patients=total_patients,
        total_appointments=total_appointments,
        appointments_this_month=appointments_this_month,
        revenue_this_month=appointments_this_month * config.REVENUE_PER_APPOINTMENT,
    )


@router.get('/stats', response_model=SystemStatsResponse)
def get_system_stats(session: SessionContext = Depends(require_admin), db: Session = Depends(get_db)):
    return compute_system_stats(db)
