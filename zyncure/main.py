import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from zyncure.core import config
from zyncure.database import Base, engine, ensure_availability_schema, ensure_appointment_schema, ensure_share_schema
from zyncure.models import appointment, availability, connection, otp, record, share, user  # noqa: F401
from zyncure.routes import appointment_routes, availability_routes, connection_routes, otp_routes, share_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = FastAPI(title='ZynCure API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'] if config.CORS_ALLOW_ALL else config.CORS_ALLOWED_ORIGINS,
    allow_credentials=not config.CORS_ALLOW_ALL,
    allow_methods=['*'],
    allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_appointment_schema()
        ensure_share_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'ZynCure API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(connection_routes.router, prefix='/connections')
app.include_router(share_routes.router, prefix='/shares')
app.include_router(otp_routes.router, prefix='/otp')
