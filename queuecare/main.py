import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from queuecare.auth.session import SessionContext, SessionEvent, session_events
from queuecare.core import config
from queuecare.core.logging_config import configure_logging
from queuecare.database import Base, engine, ensure_appointment_schema, ensure_availability_schema
from queuecare.models import appointment, auth_session, availability, doctor, service_category, user  # noqa: F401
from queuecare.routes import admin_routes, appointment_routes, auth_routes, doctor_routes

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='QueueCare')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


def log_session_event(event: SessionEvent, session: SessionContext) -> None:
    logger.info('Session %s for user %s: %s', session.session_id, session.user.id, event.value)


session_events.subscribe(log_session_event)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'QueueCare API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(doctor_routes.router, prefix='/doctors')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(admin_routes.router, prefix='/admin')
