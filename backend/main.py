import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import (
    Base,
    engine,
    ensure_appointment_schema,
    ensure_availability_schema,
    ensure_slot_schema,
)
from backend.models import appointment, availability, slot  # noqa: F401
from backend.routes import availability_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Scheduling Availability API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    logger.info(
        'Slot regeneration policy: %s; future horizons: %s months',
        config.SLOT_REGENERATION_POLICY,
        ', '.join(str(months) for months in config.FUTURE_HORIZON_OPTIONS),
    )


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
