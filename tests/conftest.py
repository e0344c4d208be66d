import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ['RESEND_API_KEY'] = ''

from zyncure.auth.passwords import hash_password  # noqa: E402
from zyncure.database import Base  # noqa: E402
from zyncure.models import appointment, availability, connection, otp, record, share  # noqa: E402,F401
from zyncure.models.availability import DoctorAvailability  # noqa: E402
from zyncure.models.user import DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    counter = {'value': 0}

    def _make_user(role: str = PATIENT_ROLE, email: str | None = None, password: str | None = None) -> User:
        counter['value'] += 1
        user = User(
            email=email or f'{role}{counter["value"]}@example.com',
            role=role,
            first_name=role.capitalize(),
            last_name=str(counter['value']),
            hashed_password=hash_password(password) if password else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def doctor(make_user) -> User:
    return make_user(DOCTOR_ROLE)


@pytest.fixture
def patient(make_user) -> User:
    return make_user(PATIENT_ROLE)


@pytest.fixture
def monday_template(db, doctor) -> DoctorAvailability:
    template = DoctorAvailability(
        doctor_id=doctor.id,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(10, 0),
        duration_minutes=30,
        is_active=True,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template
