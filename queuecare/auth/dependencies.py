from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from queuecare.auth.session import SessionContext, resolve_session
from queuecare.core.errors import Forbidden
from queuecare.database import get_db

security = HTTPBearer()


def get_session_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> SessionContext:
    return resolve_session(db, credentials.credentials)


def require_roles(*roles: str):
    def dependency(session: SessionContext = Depends(get_session_context)) -> SessionContext:
        if session.role not in roles:
            raise Forbidden('You do not have permission to perform this action.')
        return session

    return dependency


require_admin = require_roles('admin')
require_staff = require_roles('receptionist', 'admin')
