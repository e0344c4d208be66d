"""Profile model definitions."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from zyncure.database import Base

PATIENT_ROLE = 'patient'
DOCTOR_ROLE = 'doctor'
ADMIN_ROLE = 'admin'


def new_profile_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Represents an account profile mirrored from the auth service."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_profile_id)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String)
    role = Column(String, nullable=False)  # patient/doctor/admin
    first_name = Column(String)
    last_name = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    @property
    def full_name(self) -> str:
        parts = [self.first_name or '', self.last_name or '']
        return ' '.join(part for part in parts if part) or self.email
