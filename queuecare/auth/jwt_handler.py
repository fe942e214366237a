from datetime import datetime, timedelta, timezone

import jwt

from queuecare.core import config


def create_access_token(subject: str, session_id: str, expires_at: datetime) -> str:
    payload = {
        "sub": subject,
        "sid": session_id,
        "exp": expires_at.astimezone(timezone.utc),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def session_expiry(now: datetime | None = None, expires_minutes: int | None = None) -> datetime:
    now = now or datetime.now()
    return now + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
