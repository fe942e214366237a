"""Explicit session state for authenticated requests.

A ``SessionContext`` is resolved per request from the bearer token and the
``auth_sessions`` row it points at, then handed to the handlers that need it.
Lifecycle changes are published on ``session_events`` so other parts of the
application can react without sharing mutable global state.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

import jwt
from sqlalchemy.orm import Session

from queuecare.auth import jwt_handler
from queuecare.core.errors import Unauthorized
from queuecare.models.auth_session import AuthSession
from queuecare.models.user import STAFF_ROLES, User

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


@dataclass
class SessionContext:
    user: User
    session_id: str
    expires_at: datetime
    access_token: str | None = None

    @property
    def role(self) -> str:
        return self.user.role

    @property
    def is_staff(self) -> bool:
        return self.user.role in STAFF_ROLES


SessionListener = Callable[[SessionEvent, SessionContext], None]


class SessionEvents:
    """Publish/subscribe hub for session lifecycle changes."""

    def __init__(self):
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SessionEvent, context: SessionContext) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, context)
            except Exception:
                logger.exception('Session listener failed for %s', event.value)


session_events = SessionEvents()


def open_session(db: Session, user: User, now: datetime | None = None) -> SessionContext:
    now = now or datetime.now()
    record = AuthSession(
        id=uuid.uuid4().hex,
        user_id=user.id,
        created_at=now,
        expires_at=jwt_handler.session_expiry(now),
    )
    db.add(record)
    db.commit()

    token = jwt_handler.create_access_token(str(user.id), record.id, record.expires_at)
    return SessionContext(user=user, session_id=record.id, expires_at=record.expires_at, access_token=token)


def revoke_session(db: Session, session_id: str, now: datetime | None = None) -> None:
    record = db.get(AuthSession, session_id)
    if record is not None and record.revoked_at is None:
        record.revoked_at = now or datetime.now()
        db.commit()


def resolve_session(db: Session, token: str, now: datetime | None = None) -> SessionContext:
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise Unauthorized('Session expired or signed out') from exc
    except Exception as exc:
        raise Unauthorized('Invalid token') from exc

    session_id = payload.get('sid')
    subject = payload.get('sub')
    if not session_id or not subject:
        raise Unauthorized('Invalid token subject')

    record = db.get(AuthSession, session_id)
    now = now or datetime.now()
    if record is None or record.revoked_at is not None or record.expires_at <= now:
        raise Unauthorized('Session expired or signed out')
    if str(record.user_id) != str(subject):
        raise Unauthorized('Invalid token subject')

    user = db.get(User, record.user_id)
    if user is None:
        raise Unauthorized('User not found')

    return SessionContext(user=user, session_id=record.id, expires_at=record.expires_at, access_token=token)
