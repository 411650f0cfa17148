import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking.core import config
from booking.database import Base, engine, ensure_appointment_schema
from booking.models import appointment, consultant  # noqa: F401
from booking.routes import appointment_routes, consultant_routes, health_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@asynccontextmanager
async def lifespan(_app: FastAPI):
    config.validate_runtime_config()
    initialize_database()
    logger.info('Consultant booking API started (env=%s)', config.APP_ENV)
    yield


app = FastAPI(title='Consultant Booking API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
def root():
    return {'status': 'Consultant Booking API Running'}


app.include_router(health_routes.router)
app.include_router(appointment_routes.router, prefix='/api/appointments')
app.include_router(consultant_routes.router, prefix='/api/consultants')
