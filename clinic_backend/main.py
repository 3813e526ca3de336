import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.core import config
from clinic_backend.database import create_schema
from clinic_backend.errors import ClinicError, PersistenceError
from clinic_backend.routes import appointment_routes, availability_routes, telemedicine_routes

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        create_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')


@app.exception_handler(ClinicError)
def handle_clinic_error(request: Request, exc: ClinicError) -> JSONResponse:
    detail = exc.detail
    if isinstance(exc, PersistenceError):
        if config.is_production():
            detail = 'Internal server error.'
        elif exc.__cause__ is not None:
            detail = f'{exc.detail} {exc.__cause__}'

    return JSONResponse(status_code=exc.status_code, content={'code': exc.code, 'detail': detail})


@app.get('/')
def root():
    return {'status': 'Clinic API Running'}


app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(telemedicine_routes.router, prefix='/telemedicine')
app.include_router(availability_routes.router, prefix='/availability')
