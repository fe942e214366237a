"""Booking reconciliation and appointment status handling."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from queuecare.core import config
from queuecare.core.errors import Conflict, Forbidden, NotFound, ServiceError, ValidationFailed
from queuecare.database import database_guard
from queuecare.models.appointment import APPOINTMENT_STATUSES, Appointment
from queuecare.models.doctor import Doctor
from queuecare.models.user import User
from queuecare.services.availability import normalize_slot_label, read_availability

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_NOTES_LENGTH = 600

ALLOWED_TRANSITIONS = {
    'scheduled': {'confirmed', 'in_progress', 'cancelled', 'no_show'},
    'confirmed': {'in_progress', 'cancelled', 'no_show'},
    'in_progress': {'completed'},
    'completed': set(),
    'cancelled': set(),
    'no_show': set(),
}


@dataclass
class BookingOutcome:
    appointment: Appointment | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_slot_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        slot_time = value
    else:
        try:
            slot_time = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
        except ValueError as exc:
            raise ValidationFailed(f'Invalid slot time: {value!r}.') from exc

    # Match on the wall-clock time the client sent.
    if slot_time.tzinfo is not None:
        slot_time = slot_time.replace(tzinfo=None)

    return slot_time.replace(second=0, microsecond=0)


def _book(
    db: Session,
    patient_id: int,
    doctor_id: int,
    slot_time: str | datetime,
    service_type: str | None,
    notes: str | None,
    now: datetime | None,
) -> Appointment:
    slot_time = parse_slot_timestamp(slot_time)
    slot_date = slot_time.date()
    slot_label = normalize_slot_label(slot_time)
    now = now or datetime.now()

    if notes is not None and len(notes) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValidationFailed(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    if slot_time <= now:
        raise ValidationFailed('Appointments must be scheduled in the future.')

    with database_guard(db, 'look up booking participants'):
        if db.get(Doctor, doctor_id) is None:
            raise NotFound('Doctor not found.')
        patient = db.get(User, patient_id)
        if patient is None or patient.role != 'patient':
            raise NotFound('Patient not found.')

    availability = read_availability(db, doctor_id, slot_date)
    is_slot_available = any(
        normalize_slot_label(slot.start_time) == slot_label and slot.is_available
        for slot in availability
    )
    if not is_slot_available:
        raise ValidationFailed(
            f'Time slot {slot_label} on {slot_date.isoformat()} is not available for this doctor.'
        )

    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        slot_time=slot_time,
        status='scheduled',
        service_type=service_type,
        notes=notes,
        created_at=now,
    )

    with database_guard(db, 'book appointment'):
        db.add(appointment)
        try:
            db.commit()
        except IntegrityError as exc:
            # Lost the race for this slot to a concurrent booking.
            db.rollback()
            raise Conflict('This time is already booked.') from exc
        db.refresh(appointment)

    return appointment


def try_book_appointment(
    db: Session,
    patient_id: int,
    doctor_id: int,
    slot_time: str | datetime,
    service_type: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> BookingOutcome:
    """Re-validate the requested slot against live availability and book it.

    Returns a ``BookingOutcome`` carrying either the new appointment or the
    error explaining why nothing was written.
    """
    try:
        appointment = _book(db, patient_id, doctor_id, slot_time, service_type, notes, now)
    except ServiceError as exc:
        logger.warning('Booking rejected for patient %s with doctor %s at %s: %s', patient_id, doctor_id, slot_time, exc.detail)
        return BookingOutcome(error=exc)

    logger.info('Booked appointment %s for patient %s with doctor %s', appointment.id, patient_id, doctor_id)
    return BookingOutcome(appointment=appointment)


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    with database_guard(db, 'load appointment'):
        appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.')
    return appointment


def update_appointment_status(db: Session, appointment_id: int, new_status: str) -> Appointment:
    new_status = new_status.strip().lower()
    if new_status not in APPOINTMENT_STATUSES:
        raise ValidationFailed(f'Invalid appointment status: {new_status}.')

    appointment = get_appointment(db, appointment_id)
    if appointment.status == new_status:
        return appointment

    if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        raise Conflict(f'Cannot change appointment status from {appointment.status} to {new_status}.')

    previous_status = appointment.status
    with database_guard(db, 'update appointment status'):
        appointment.status = new_status
        db.commit()
        db.refresh(appointment)

    logger.info('Appointment %s moved from %s to %s', appointment.id, previous_status, new_status)
    return appointment


def can_patient_cancel(appointment: Appointment, now: datetime | None = None) -> bool:
    now = now or datetime.now()
    cutoff = timedelta(hours=config.CANCELLATION_CUTOFF_HOURS)
    return appointment.status == 'scheduled' and appointment.slot_time - now > cutoff


def cancel_appointment_for_patient(
    db: Session,
    appointment_id: int,
    patient_id: int,
    now: datetime | None = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)

    if appointment.patient_id != patient_id:
        raise Forbidden('Only the patient who booked this appointment can cancel it.')

    if appointment.status != 'scheduled':
        raise Conflict('Only scheduled appointments can be cancelled.')

    if not can_patient_cancel(appointment, now):
        raise Conflict(
            f'Appointments can only be cancelled more than {config.CANCELLATION_CUTOFF_HOURS} hours in advance.'
        )

    return update_appointment_status(db, appointment_id, 'cancelled')
