import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_schema
from backend.models import appeal, availability, booking, review, tutor_profile, user  # noqa: F401
from backend.routes import (
    admin_routes,
    appeal_routes,
    auth_routes,
    availability_routes,
    booking_routes,
    cron_routes,
    dashboard_routes,
    tutor_routes,
    user_routes,
    video_routes,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Tutoring Marketplace API')

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
        Base.metadata.create_all(bind=engine)
        ensure_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get('msg', 'Invalid request.') if errors else 'Invalid request.'
    # pydantic prefixes messages raised from field validators.
    message = message.removeprefix('Value error, ')
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={'detail': message})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'detail': 'Internal server error.'},
    )


@app.get('/')
def root():
    return {'status': 'Tutoring Marketplace API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(availability_routes.router, prefix='/tutor/availability')
app.include_router(video_routes.router, prefix='/agora')
app.include_router(appeal_routes.router, prefix='/appeals')
app.include_router(user_routes.router, prefix='/user')
app.include_router(tutor_routes.router, prefix='/tutors')
app.include_router(dashboard_routes.router, prefix='/dashboard')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(cron_routes.router, prefix='/cron')
