"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, text
from zyncure.database import Base

REQUESTED = 'requested'
PENDING = 'pending'  # legacy alias of REQUESTED
CONFIRMED = 'confirmed'
CANCELLED = 'cancelled'
COMPLETED = 'completed'
RESCHEDULED = 'rescheduled'

ALL_STATUSES = (REQUESTED, PENDING, CONFIRMED, CANCELLED, COMPLETED, RESCHEDULED)
TERMINAL_STATUSES = frozenset({CANCELLED, COMPLETED})
# Statuses that hold their (doctor, date, time) slot.
ACTIVE_SLOT_STATUSES = (REQUESTED, PENDING, CONFIRMED, COMPLETED)

_active_slot_clause = text(
    "status IN ({})".format(', '.join(f"'{value}'" for value in ACTIVE_SLOT_STATUSES))
)


def canonical_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return REQUESTED if normalized == PENDING else normalized


class Appointment(Base):
    """Represents a patient's appointment with a doctor."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=REQUESTED)
    reason = Column(String)
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('idx_appointments_doctor_date', 'doctor_id', 'date'),
    )

    @property
    def canonical_status(self) -> str | None:
        return canonical_status(self.status)


ACTIVE_SLOT_INDEX = Index(
    'uq_appointments_active_slot',
    Appointment.doctor_id,
    Appointment.date,
    Appointment.time,
    unique=True,
    postgresql_where=_active_slot_clause,
    sqlite_where=_active_slot_clause,
)
