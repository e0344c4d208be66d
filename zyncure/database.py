import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from zyncure.core.errors import UpstreamFailure


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

_schema_lock = Lock()
_checked_tables: set[str] = set()


def _apply_schema_steps(table_name: str, column_steps: list[tuple[str, str]], index_statements: list[str]) -> bool:
    """Add missing columns and indexes to a table created by an older release.

    Returns False when the table does not exist yet; ``create_all`` builds it
    with the current layout in that case.
    """
    inspector = inspect(engine)

    if table_name not in inspector.get_table_names():
        return False

    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with engine.begin() as connection:
        for column_name, statement in column_steps:
            if column_name not in existing_columns:
                logger.info('Adding column %s.%s', table_name, column_name)
                connection.execute(text(statement))
        for statement in index_statements:
            connection.execute(text(statement))

    return True


def ensure_availability_schema() -> None:
    if 'doctor_availability' in _checked_tables:
        return

    with _schema_lock:
        if 'doctor_availability' in _checked_tables:
            return

        _apply_schema_steps(
            'doctor_availability',
            [
                ('duration_minutes', 'ALTER TABLE doctor_availability ADD COLUMN duration_minutes INTEGER DEFAULT 30'),
                ('is_active', 'ALTER TABLE doctor_availability ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
                ('updated_at', 'ALTER TABLE doctor_availability ADD COLUMN updated_at TIMESTAMP'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_doctor_availability_day ON doctor_availability(doctor_id, day_of_week)',
            ],
        )
        _checked_tables.add('doctor_availability')


def ensure_appointment_schema() -> None:
    if 'appointments' in _checked_tables:
        return

    with _schema_lock:
        if 'appointments' in _checked_tables:
            return

        table_exists = _apply_schema_steps(
            'appointments',
            [
                ('reason', 'ALTER TABLE appointments ADD COLUMN reason VARCHAR'),
                ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
                ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date)',
            ],
        )

        if table_exists:
            # Imported here because the model module imports Base from this one.
            from zyncure.models.appointment import ACTIVE_SLOT_INDEX

            ACTIVE_SLOT_INDEX.create(bind=engine, checkfirst=True)

        _checked_tables.add('appointments')


def ensure_share_schema() -> None:
    if 'file_shares' in _checked_tables:
        return

    with _schema_lock:
        if 'file_shares' in _checked_tables:
            return

        _apply_schema_steps(
            'file_shares',
            [
                ('is_active', 'ALTER TABLE file_shares ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
                ('updated_at', 'ALTER TABLE file_shares ADD COLUMN updated_at TIMESTAMP'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_file_shares_recipient ON file_shares(shared_with_id, is_active)',
            ],
        )
        _checked_tables.add('file_shares')


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
        ensure_share_schema()
    except SQLAlchemyError as exc:
        logger.exception('Schema check failed.')
        raise UpstreamFailure() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
