import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from queuecare.auth.dependencies import get_session_context
from queuecare.auth.passwords import MAX_PASSWORD_BYTES, hash_password, verify_password
from queuecare.auth.session import (
    SessionContext,
    SessionEvent,
    open_session,
    revoke_session,
    session_events,
)
from queuecare.core import config
from queuecare.core.errors import Conflict, Unauthorized
from queuecare.database import database_guard, get_db
from queuecare.models.user import User
from queuecare.schemas import UserResponse

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email is required.')
    return normalized


class SignUpRequest(BaseModel):
    email: str
    password: str
    name: str
    phone: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        if len(value.encode()) > MAX_PASSWORD_BYTES:
            raise ValueError(f'Password must be at most {MAX_PASSWORD_BYTES} bytes.')
        return value

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized


class SignInRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    phone: str | None = None


class SessionResponse(BaseModel):
    access_token: str | None = None
    token_type: str = 'bearer'
    expires_at: datetime
    user: UserResponse


def to_session_response(session: SessionContext) -> SessionResponse:
    return SessionResponse(
        access_token=session.access_token,
        expires_at=session.expires_at,
        user=UserResponse.model_validate(session.user),
    )


@router.post('/signup', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def sign_up(data: SignUpRequest, db: Session = Depends(get_db)):
    with database_guard(db, 'sign up'):
        if db.query(User).filter(User.email == data.email).first():
            raise Conflict('An account with this email already exists.')

        user = User(
            email=data.email,
            hashed_password=hash_password(data.password),
            name=data.name,
            phone=data.phone,
            role='admin' if data.email in config.ADMIN_EMAILS else 'patient',
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError as exc:
            # A concurrent sign-up claimed the email first.
            db.rollback()
            raise Conflict('An account with this email already exists.') from exc
        db.refresh(user)

    logger.info('Registered user %s with role %s', user.id, user.role)
    return user


@router.post('/signin', response_model=SessionResponse)
def sign_in(data: SignInRequest, db: Session = Depends(get_db)):
    with database_guard(db, 'sign in'):
        user = db.query(User).filter(User.email == data.email).first()
        if user is None or not verify_password(data.password, user.hashed_password):
            raise Unauthorized('Invalid email or password.')

        session = open_session(db, user)

    session_events.emit(SessionEvent.SIGNED_IN, session)
    return to_session_response(session)


@router.post('/signout', status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'sign out'):
        revoke_session(db, session.session_id)

    session_events.emit(SessionEvent.SIGNED_OUT, session)


@router.post('/refresh', response_model=SessionResponse)
def refresh_session(
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    with database_guard(db, 'refresh session'):
        revoke_session(db, session.session_id)
        refreshed = open_session(db, session.user)

    session_events.emit(SessionEvent.TOKEN_REFRESHED, refreshed)
    return to_session_response(refreshed)


@router.get('/session', response_model=SessionResponse)
def current_session(session: SessionContext = Depends(get_session_context)):
    return to_session_response(session)


@router.patch('/profile', response_model=UserResponse)
def update_profile(
    data: UpdateProfileRequest,
    session: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    user = session.user
    with database_guard(db, 'update profile'):
        if data.name is not None and data.name.strip():
            user.name = data.name.strip()
        if data.phone is not None:
            user.phone = data.phone.strip() or None
        db.commit()
        db.refresh(user)

    session_events.emit(SessionEvent.USER_UPDATED, session)
    return user
