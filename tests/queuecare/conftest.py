import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from queuecare.auth.session import SessionContext  # noqa: E402
from queuecare.database import Base  # noqa: E402
from queuecare.models import appointment, auth_session, availability, doctor, service_category, user  # noqa: E402,F401
from queuecare.models.doctor import Doctor  # noqa: E402
from queuecare.models.user import User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    def factory(email: str, role: str = 'patient', name: str = 'Test User') -> User:
        record = User(email=email, hashed_password='', name=name, role=role)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return factory


@pytest.fixture
def make_doctor(db, make_user):
    def factory(email: str = 'house@clinic.test', specialty: str = 'Cardiology') -> Doctor:
        profile = make_user(email, role='doctor', name='Dr. ' + email.split('@')[0].title())
        record = Doctor(user_id=profile.id, specialty=specialty)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return factory


@pytest.fixture
def patient(make_user):
    return make_user('patient@example.test')


@pytest.fixture
def other_patient(make_user):
    return make_user('other@example.test')


@pytest.fixture
def admin(make_user):
    return make_user('admin@clinic.test', role='admin', name='Admin')


@pytest.fixture
def receptionist(make_user):
    return make_user('desk@clinic.test', role='receptionist', name='Front Desk')


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def session_for():
    def factory(account: User) -> SessionContext:
        return SessionContext(
            user=account,
            session_id='test-session',
            expires_at=datetime.now() + timedelta(hours=1),
        )

    return factory
