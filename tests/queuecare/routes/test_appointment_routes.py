from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError

from queuecare.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from queuecare.models.appointment import Appointment
from queuecare.routes.appointment_routes import (
    CreateAppointmentRequest,
    cancel_my_appointment,
    create_appointment,
    list_my_appointments,
)
from queuecare.routes.doctor_routes import get_doctor, get_doctor_availability, list_doctors
from queuecare.services.availability import CandidateSlot, publish_availability

BOOKING_DATE = date.today() + timedelta(days=7)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(BOOKING_DATE, datetime.min.time()).replace(hour=hour, minute=minute)


@pytest.fixture
def published(db, doctor):
    publish_availability(
        db,
        doctor.id,
        BOOKING_DATE,
        [
            CandidateSlot(start_time='09:00', end_time='10:00'),
            CandidateSlot(start_time='10:00', end_time='11:00'),
            CandidateSlot(start_time='11:00', end_time='12:00'),
        ],
    )
    return doctor


def test_create_appointment_request_normalizes_optional_fields() -> None:
    request = CreateAppointmentRequest(doctor_id=1, slot_time=at(9), service_type='  ', notes='  bring x-rays ')

    assert request.service_type is None
    assert request.notes == 'bring x-rays'


def test_create_appointment_request_rejects_long_notes() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(doctor_id=1, slot_time=at(9), notes='x' * 601)


def test_list_doctors_joins_profiles_and_filters_by_specialty(db, make_doctor, patient, session_for) -> None:
    cardiologist = make_doctor('heart@clinic.test', specialty='Cardiology')
    make_doctor('skin@clinic.test', specialty='Dermatology')

    everyone = list_doctors(specialty=None, session=session_for(patient), db=db)
    cardiology = list_doctors(specialty=' cardiology ', session=session_for(patient), db=db)

    assert len(everyone) == 2
    assert all(doctor.user.email for doctor in everyone)
    assert [doctor.id for doctor in cardiology] == [cardiologist.id]
    assert get_doctor(cardiologist.id, session=session_for(patient), db=db).user.name == 'Dr. Heart'


def test_patient_books_a_slot_and_it_disappears_from_availability(db, published, patient, session_for) -> None:
    response = create_appointment(
        CreateAppointmentRequest(doctor_id=published.id, slot_time=at(10), service_type='Consultation'),
        session=session_for(patient),
        db=db,
    )

    assert response.status == 'scheduled'
    assert response.patient.id == patient.id
    assert response.doctor.user.email == 'house@clinic.test'
    assert response.service_type == 'Consultation'
    assert response.can_cancel is True

    remaining = get_doctor_availability(published.id, slot_date=BOOKING_DATE, session=session_for(patient), db=db)
    assert [slot.start_time for slot in remaining] == ['09:00', '11:00']


def test_create_appointment_raises_the_booking_error(db, published, patient, session_for) -> None:
    with pytest.raises(ValidationFailed) as exception_info:
        create_appointment(
            CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9, 30)),
            session=session_for(patient),
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == (
        f'Time slot 09:30 on {BOOKING_DATE.isoformat()} is not available for this doctor.'
    )
    assert db.query(Appointment).count() == 0


def test_patient_cannot_book_for_someone_else(db, published, patient, other_patient, session_for) -> None:
    with pytest.raises(Forbidden):
        create_appointment(
            CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9), patient_id=other_patient.id),
            session=session_for(patient),
            db=db,
        )


def test_receptionist_can_book_on_behalf_of_patient(db, published, patient, receptionist, session_for) -> None:
    response = create_appointment(
        CreateAppointmentRequest(doctor_id=published.id, slot_time=at(11), patient_id=patient.id),
        session=session_for(receptionist),
        db=db,
    )

    assert response.patient_id == patient.id


def test_bookings_for_non_patient_accounts_are_not_found(db, published, admin, receptionist, session_for) -> None:
    with pytest.raises(NotFound) as exception_info:
        create_appointment(
            CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9)),
            session=session_for(admin),
            db=db,
        )
    with pytest.raises(NotFound):
        create_appointment(
            CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9), patient_id=admin.id),
            session=session_for(receptionist),
            db=db,
        )

    assert exception_info.value.detail == 'Patient not found.'
    assert db.query(Appointment).count() == 0


def test_list_my_appointments_only_returns_own_in_slot_order(
    db,
    published,
    patient,
    other_patient,
    session_for,
) -> None:
    create_appointment(CreateAppointmentRequest(doctor_id=published.id, slot_time=at(11)), session=session_for(patient), db=db)
    create_appointment(CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9)), session=session_for(patient), db=db)
    create_appointment(
        CreateAppointmentRequest(doctor_id=published.id, slot_time=at(10)),
        session=session_for(other_patient),
        db=db,
    )

    mine = list_my_appointments(session=session_for(patient), db=db)

    assert [appointment.slot_time for appointment in mine] == [at(9), at(11)]
    assert all(appointment.patient_id == patient.id for appointment in mine)


def test_cancel_my_appointment_reopens_the_slot(db, published, patient, session_for) -> None:
    booked = create_appointment(
        CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9)),
        session=session_for(patient),
        db=db,
    )

    cancelled = cancel_my_appointment(booked.id, session=session_for(patient), db=db)

    assert cancelled.status == 'cancelled'
    assert cancelled.can_cancel is False
    remaining = get_doctor_availability(published.id, slot_date=BOOKING_DATE, session=session_for(patient), db=db)
    assert [slot.start_time for slot in remaining] == ['09:00', '10:00', '11:00']


def test_cancel_twice_is_a_conflict(db, published, patient, session_for) -> None:
    booked = create_appointment(
        CreateAppointmentRequest(doctor_id=published.id, slot_time=at(9)),
        session=session_for(patient),
        db=db,
    )
    cancel_my_appointment(booked.id, session=session_for(patient), db=db)

    with pytest.raises(Conflict):
        cancel_my_appointment(booked.id, session=session_for(patient), db=db)
