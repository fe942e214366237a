from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from queuecare.auth.session import SessionEvent, open_session, resolve_session, session_events
from queuecare.core import config
from queuecare.core.errors import Conflict, Unauthorized
from queuecare.models.auth_session import AuthSession
from queuecare.models.user import User
from queuecare.routes import auth_routes
from queuecare.routes.auth_routes import (
    SignInRequest,
    SignUpRequest,
    UpdateProfileRequest,
    current_session,
    refresh_session,
    sign_in,
    sign_out,
    sign_up,
    update_profile,
)

PASSWORD = 'correct-horse'


@pytest.fixture
def recorded_events():
    events = []
    unsubscribe = session_events.subscribe(lambda event, session: events.append((event, session.user.email)))
    try:
        yield events
    finally:
        unsubscribe()


def register(db, email: str = 'Pat@Example.Test') -> User:
    return sign_up(SignUpRequest(email=email, password=PASSWORD, name=' Pat ', phone='555-0100'), db=db)


def test_sign_up_request_normalizes_email_and_name() -> None:
    request = SignUpRequest(email=' PAT@EXAMPLE.TEST ', password=PASSWORD, name='  Pat  ')

    assert request.email == 'pat@example.test'
    assert request.name == 'Pat'


@pytest.mark.parametrize(
    'payload',
    [
        {'email': 'not-an-email', 'password': PASSWORD, 'name': 'Pat'},
        {'email': 'pat@example.test', 'password': 'short', 'name': 'Pat'},
        {'email': 'pat@example.test', 'password': PASSWORD, 'name': '   '},
    ],
)
def test_sign_up_request_rejects_invalid_payloads(payload: dict) -> None:
    with pytest.raises(ValidationError):
        SignUpRequest(**payload)


def test_sign_up_creates_patient_with_hashed_password(db) -> None:
    user = register(db)

    assert user.email == 'pat@example.test'
    assert user.role == 'patient'
    assert user.name == 'Pat'
    assert user.hashed_password and user.hashed_password != PASSWORD


def test_sign_up_grants_admin_role_to_configured_emails(db, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'ADMIN_EMAILS', {'boss@clinic.test'})

    user = register(db, email='Boss@Clinic.Test')

    assert user.role == 'admin'


def test_sign_up_rejects_duplicate_email(db) -> None:
    register(db)

    with pytest.raises(Conflict) as exception_info:
        register(db, email='pat@example.test')

    assert exception_info.value.status_code == 409


def test_sign_up_losing_an_email_race_is_a_conflict(db, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    make_user('pat@example.test')

    class NoMatch:
        def filter(self, *_args):
            return self

        def first(self):
            return None

    monkeypatch.setattr(db, 'query', lambda *_args: NoMatch())

    with pytest.raises(Conflict) as exception_info:
        register(db)

    monkeypatch.undo()
    assert exception_info.value.detail == 'An account with this email already exists.'
    assert db.query(User).count() == 1


def test_sign_in_rejects_wrong_password(db) -> None:
    register(db)

    with pytest.raises(Unauthorized):
        sign_in(SignInRequest(email='pat@example.test', password='wrong-password'), db=db)


def test_sign_in_rejects_unknown_email(db) -> None:
    with pytest.raises(Unauthorized):
        sign_in(SignInRequest(email='nobody@example.test', password=PASSWORD), db=db)


def test_sign_in_opens_session_and_publishes_event(db, recorded_events) -> None:
    register(db)

    response = sign_in(SignInRequest(email='PAT@example.test', password=PASSWORD), db=db)

    assert response.token_type == 'bearer'
    assert response.user.email == 'pat@example.test'
    assert db.query(AuthSession).count() == 1
    assert recorded_events == [(SessionEvent.SIGNED_IN, 'pat@example.test')]

    session = resolve_session(db, response.access_token)
    assert session.user.email == 'pat@example.test'
    assert current_session(session=session).user.id == session.user.id


def test_sign_out_revokes_the_session(db, recorded_events) -> None:
    register(db)
    token = sign_in(SignInRequest(email='pat@example.test', password=PASSWORD), db=db).access_token
    session = resolve_session(db, token)

    sign_out(session=session, db=db)

    with pytest.raises(Unauthorized):
        resolve_session(db, token)
    assert recorded_events[-1] == (SessionEvent.SIGNED_OUT, 'pat@example.test')


def test_refresh_replaces_the_session_token(db, recorded_events) -> None:
    register(db)
    old_token = sign_in(SignInRequest(email='pat@example.test', password=PASSWORD), db=db).access_token

    refreshed = refresh_session(session=resolve_session(db, old_token), db=db)

    assert refreshed.access_token != old_token
    assert resolve_session(db, refreshed.access_token).user.email == 'pat@example.test'
    with pytest.raises(Unauthorized):
        resolve_session(db, old_token)
    assert recorded_events[-1] == (SessionEvent.TOKEN_REFRESHED, 'pat@example.test')


def test_resolve_session_rejects_garbage_token(db) -> None:
    with pytest.raises(Unauthorized) as exception_info:
        resolve_session(db, 'not-a-token')

    assert exception_info.value.detail == 'Invalid token'


def test_resolve_session_rejects_session_past_its_expiry(db) -> None:
    register(db)
    token = sign_in(SignInRequest(email='pat@example.test', password=PASSWORD), db=db).access_token
    later = datetime.now() + timedelta(minutes=config.JWT_EXPIRES_MINUTES + 1)

    with pytest.raises(Unauthorized) as exception_info:
        resolve_session(db, token, now=later)

    assert exception_info.value.detail == 'Session expired or signed out'


def test_resolve_session_reports_expired_token_as_expired_session(db) -> None:
    user = register(db)
    stale = open_session(db, user, now=datetime.now() - timedelta(days=1))

    with pytest.raises(Unauthorized) as exception_info:
        resolve_session(db, stale.access_token)

    assert exception_info.value.detail == 'Session expired or signed out'


def test_update_profile_changes_name_and_phone(db, session_for, recorded_events) -> None:
    user = register(db)

    updated = update_profile(
        UpdateProfileRequest(name='Patricia', phone='  '),
        session=session_for(user),
        db=db,
    )

    assert updated.name == 'Patricia'
    assert updated.phone is None
    assert recorded_events == [(SessionEvent.USER_UPDATED, 'pat@example.test')]


def test_failing_listener_does_not_break_sign_in(db) -> None:
    register(db)

    def broken_listener(_event, _session):
        raise RuntimeError('listener failure')

    unsubscribe = session_events.subscribe(broken_listener)
    try:
        response = auth_routes.sign_in(SignInRequest(email='pat@example.test', password=PASSWORD), db=db)
    finally:
        unsubscribe()

    assert response.access_token
