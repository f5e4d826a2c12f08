import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from crm.core import config
from crm.database import (
    Base,
    engine,
    ensure_appointment_schema,
    ensure_calendar_schema,
    ensure_notification_schema,
)
from crm.models import appointment, calendar, lead, notification, property, user  # noqa: F401
from crm.routes import (
    appointments_routes,
    calendar_events_routes,
    cron_routes,
    property_calendar_routes,
    public_routes,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

config.validate_runtime_config()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_calendar_schema()
        ensure_appointment_schema()
        ensure_notification_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'Property Scheduling API Running'}


app.include_router(appointments_routes.router, prefix='/api/appointments')
app.include_router(calendar_events_routes.router, prefix='/api/calendar/events')
app.include_router(property_calendar_routes.router, prefix='/api/property-calendars')
app.include_router(public_routes.router, prefix='/api/public/appointments')
app.include_router(cron_routes.router, prefix='/api/cron')
