import logging
from threading import Lock

from fastapi import HTTPException, status
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL or "sqlite:///./tutoring.db"

engine_options = {"echo": config.SQL_ECHO}
if DATABASE_URL.startswith("sqlite"):
    engine_options["connect_args"] = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, **engine_options)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schema_checked = False

INDEX_STATEMENTS = {
    'bookings': [
        'CREATE INDEX IF NOT EXISTS idx_bookings_tutor_scheduled ON bookings(tutor_id, scheduled_at)',
        'CREATE INDEX IF NOT EXISTS idx_bookings_student_scheduled ON bookings(student_id, scheduled_at)',
        'CREATE INDEX IF NOT EXISTS idx_bookings_status_scheduled ON bookings(status, scheduled_at)',
    ],
    'availability': [
        'CREATE INDEX IF NOT EXISTS idx_availability_tutor_day ON availability(tutor_id, day_of_week)',
    ],
}


def ensure_schema() -> None:
    global _schema_checked

    if _schema_checked:
        return

    with _schema_lock:
        if _schema_checked:
            return

        existing_tables = set(inspect(engine).get_table_names())

        with engine.begin() as connection:
            for table_name, statements in INDEX_STATEMENTS.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _schema_checked = True


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable.',
    )


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        logger.exception('Database schema check failed.')
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
