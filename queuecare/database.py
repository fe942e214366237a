import logging
from contextlib import contextmanager
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from queuecare.core import config
from queuecare.core.errors import BackendUnavailable

logger = logging.getLogger(__name__)

ACTIVE_APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in_progress')
ACTIVE_STATUS_SQL = "status IN ('scheduled', 'confirmed', 'in_progress')"

connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}
engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def database_guard(db: Session, action: str):
    """Roll back and surface a 503 when the store fails mid-operation."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Database failure while trying to %s', action)
        raise BackendUnavailable() from exc


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_availability' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctor_availability')}
        migration_steps = [
            ('end_time', 'ALTER TABLE doctor_availability ADD COLUMN end_time TIME'),
            ('is_available', 'ALTER TABLE doctor_availability ADD COLUMN is_available BOOLEAN DEFAULT TRUE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_doctor_availability_slot '
                    'ON doctor_availability(doctor_id, date, start_time)'
                )
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('service_type', 'ALTER TABLE appointments ADD COLUMN service_type VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_slot ON appointments(patient_id, slot_time)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_slot_active '
                    f'ON appointments(doctor_id, slot_time) WHERE {ACTIVE_STATUS_SQL}'
                )
            )

        _appointment_schema_checked = True

