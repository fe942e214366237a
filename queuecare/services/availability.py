"""Publishing and reading a doctor's bookable time slots.

Slots are stored one row per available start time. A publish replaces the whole
set for a doctor/date inside a single transaction. Reads only return slots that
no active appointment currently holds, so bookings and cancellations are
reflected without rewriting the published rows.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from queuecare.core.errors import NotFound, ValidationFailed
from queuecare.database import ACTIVE_APPOINTMENT_STATUSES, database_guard
from queuecare.models.appointment import Appointment
from queuecare.models.availability import DoctorAvailability
from queuecare.models.doctor import Doctor

logger = logging.getLogger(__name__)

_CLOCK_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?')


@dataclass
class CandidateSlot:
    start_time: str | time
    end_time: str | time
    is_available: bool = True


@dataclass
class AvailableSlot:
    id: int
    doctor_id: int
    date: date
    start_time: str
    end_time: str
    is_available: bool


def normalize_slot_label(value: str | time | datetime) -> str:
    """Return the ``HH:MM`` label for a bare time, a time with seconds or a date-time."""
    if isinstance(value, datetime):
        return value.strftime('%H:%M')
    if isinstance(value, time):
        return value.strftime('%H:%M')

    raw = str(value).strip()
    if 'T' in raw:
        raw = raw.split('T', 1)[1]
    elif ' ' in raw:
        raw = raw.rsplit(' ', 1)[1]

    match = _CLOCK_PATTERN.match(raw)
    if not match:
        raise ValidationFailed(f'Invalid time value: {value!r}.')

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationFailed(f'Invalid time value: {value!r}.')

    return f'{hour:02d}:{minute:02d}'


def parse_slot_time(value: str | time | datetime) -> time:
    label = normalize_slot_label(value)
    hour, minute = label.split(':')
    return time(int(hour), int(minute))


def parse_calendar_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValidationFailed(f'Invalid date value: {value!r}.') from exc


def _validated_windows(slots: Iterable[CandidateSlot]) -> list[tuple[time, time]]:
    windows: list[tuple[time, time]] = []
    seen_starts: set[time] = set()

    for slot in slots:
        if not slot.is_available:
            continue

        start, end = parse_slot_time(slot.start_time), parse_slot_time(slot.end_time)
        if end <= start:
            raise ValidationFailed(f'Slot {start:%H:%M} must end after it starts.')
        if start in seen_starts:
            raise ValidationFailed(f'Duplicate slot start time {start:%H:%M}.')

        seen_starts.add(start)
        windows.append((start, end))

    windows.sort()
    for (previous_start, previous_end), (next_start, _) in zip(windows, windows[1:]):
        if next_start < previous_end:
            raise ValidationFailed(f'Slot {previous_start:%H:%M} overlaps slot {next_start:%H:%M}.')

    return windows


def publish_availability(
    db: Session,
    doctor_id: int,
    slot_date: str | date,
    slots: Iterable[CandidateSlot],
) -> list[DoctorAvailability]:
    slot_date = parse_calendar_date(slot_date)
    windows = _validated_windows(slots)

    with database_guard(db, 'publish availability'):
        if db.get(Doctor, doctor_id) is None:
            raise NotFound('Doctor not found.')

        db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.date == slot_date,
        ).delete(synchronize_session=False)

        records = [
            DoctorAvailability(
                doctor_id=doctor_id,
                date=slot_date,
                start_time=start,
                end_time=end,
                is_available=True,
            )
            for start, end in windows
        ]
        db.add_all(records)
        db.commit()

    logger.info('Published %d slots for doctor %s on %s', len(records), doctor_id, slot_date.isoformat())
    return records


def get_booked_slot_starts(db: Session, doctor_id: int, slot_date: date) -> set[str]:
    day_start = datetime.combine(slot_date, time.min)
    day_end = day_start + timedelta(days=1)

    booked_times = db.query(Appointment.slot_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.slot_time >= day_start,
        Appointment.slot_time < day_end,
    ).all()

    return {normalize_slot_label(slot_time) for (slot_time,) in booked_times}


def read_availability(db: Session, doctor_id: int, slot_date: str | date) -> list[AvailableSlot]:
    slot_date = parse_calendar_date(slot_date)

    with database_guard(db, 'read availability'):
        rows = db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.date == slot_date,
            DoctorAvailability.is_available.is_(True),
        ).order_by(DoctorAvailability.start_time.asc()).all()

        booked_starts = get_booked_slot_starts(db, doctor_id, slot_date)

    slots = []
    for row in rows:
        label = normalize_slot_label(row.start_time)
        if label in booked_starts:
            continue
        slots.append(
            AvailableSlot(
                id=row.id,
                doctor_id=row.doctor_id,
                date=row.date,
                start_time=label,
                end_time=normalize_slot_label(row.end_time),
                is_available=row.is_available,
            )
        )

    return slots


def list_availability_range(
    db: Session,
    doctor_id: int,
    start_date: str | date,
    end_date: str | date,
) -> list[DoctorAvailability]:
    start_date, end_date = parse_calendar_date(start_date), parse_calendar_date(end_date)
    if end_date < start_date:
        raise ValidationFailed('End date must not be before start date.')

    with database_guard(db, 'list availability'):
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.date >= start_date,
            DoctorAvailability.date <= end_date,
        ).order_by(DoctorAvailability.date.asc(), DoctorAvailability.start_time.asc()).all()
