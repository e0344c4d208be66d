"""Doctor availability model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Time
from zyncure.database import Base


class DoctorAvailability(Base):
    """Represents a recurring weekly availability window for a doctor."""
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)


class UnavailableDate(Base):
    """Represents a date, or part of a date, on which a doctor takes no bookings."""
    __tablename__ = "doctor_unavailable_dates"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    unavailable_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    @property
    def blocks_whole_day(self) -> bool:
        return self.start_time is None or self.end_time is None
