import logging
from datetime import date, datetime, time
from typing import Iterable, NamedTuple

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zyncure.auth.dependencies import get_current_doctor, get_current_user
from zyncure.core.errors import ConflictError, NotFound, UpstreamFailure, ValidationError
from zyncure.database import ensure_database_ready, get_db
from zyncure.models.appointment import ACTIVE_SLOT_STATUSES, Appointment
from zyncure.models.availability import DoctorAvailability, UnavailableDate
from zyncure.models.user import DOCTOR_ROLE, User

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

ALLOWED_SLOT_DURATIONS = (15, 30, 45, 60)
DEFAULT_SLOT_DURATION_MINUTES = 30
MAX_EXCEPTION_REASON_LENGTH = 300
DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class TimeSlot(NamedTuple):
    start: time
    end: time


class AvailabilityTemplateRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES
    is_active: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)


class AvailabilityTemplateResponse(BaseModel):
    id: int
    doctor_id: str
    day_of_week: int
    start_time: time
    end_time: time
    duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class UnavailableDateRequest(BaseModel):
    unavailable_date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_EXCEPTION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_EXCEPTION_REASON_LENGTH} characters or fewer.')

        return normalized


class UnavailableDateResponse(BaseModel):
    id: int
    doctor_id: str
    unavailable_date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


class BookableSlotResponse(BaseModel):
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    display_time: str


def day_of_week_for(slot_date: date) -> int:
    """Weekday index with Sunday as 0, matching the stored templates."""
    return (slot_date.weekday() + 1) % 7


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(total_minutes: int) -> time:
    return time(total_minutes // 60, total_minutes % 60)


def windows_overlap(first_start: time, first_end: time, second_start: time, second_end: time) -> bool:
    return first_start < second_end and second_start < first_end


def convert_to_12_hour(value: time) -> str:
    suffix = 'PM' if value.hour >= 12 else 'AM'
    display_hour = value.hour % 12 or 12
    return f'{display_hour}:{value.minute:02d} {suffix}'


def validate_template(candidate: DoctorAvailability, existing_templates: Iterable[DoctorAvailability]) -> None:
    if candidate.day_of_week is None or not 0 <= candidate.day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')

    if candidate.duration_minutes not in ALLOWED_SLOT_DURATIONS:
        raise ValidationError('Slot duration must be 15, 30, 45 or 60 minutes.')

    if candidate.start_time >= candidate.end_time:
        raise ValidationError('Start time must be before end time.')

    if not candidate.is_active:
        return

    for existing in existing_templates:
        if candidate.id is not None and existing.id == candidate.id:
            continue
        if existing.doctor_id != candidate.doctor_id or existing.day_of_week != candidate.day_of_week:
            continue
        if not existing.is_active:
            continue
        if windows_overlap(candidate.start_time, candidate.end_time, existing.start_time, existing.end_time):
            raise ConflictError(
                f'This window overlaps existing availability on {DAY_NAMES[candidate.day_of_week]} '
                f'({convert_to_12_hour(existing.start_time)} to {convert_to_12_hour(existing.end_time)}).'
            )


def validate_exception_window(start_time: time | None, end_time: time | None) -> None:
    if (start_time is None) != (end_time is None):
        raise ValidationError('Provide both a start and an end time, or neither to block the whole day.')

    if start_time is not None and start_time >= end_time:
        raise ValidationError('Start time must be before end time.')


def partition_window(start_time: time, end_time: time, duration_minutes: int) -> list[TimeSlot]:
    """Split [start, end) into whole slots; a trailing partial slot is dropped."""
    start = to_minutes(start_time)
    slot_count = (to_minutes(end_time) - start) // duration_minutes

    return [
        TimeSlot(
            from_minutes(start + index * duration_minutes),
            from_minutes(start + (index + 1) * duration_minutes),
        )
        for index in range(max(slot_count, 0))
    ]


def slot_is_blocked(slot: TimeSlot, exceptions: Iterable[UnavailableDate]) -> bool:
    for exception in exceptions:
        if exception.start_time is None or exception.end_time is None:
            return True
        if windows_overlap(slot.start, slot.end, exception.start_time, exception.end_time):
            return True
    return False


def slot_is_booked(slot: TimeSlot, booked_times: Iterable[time]) -> bool:
    return any(slot.start <= booked_time < slot.end for booked_time in booked_times)


def get_booked_times(db: Session, doctor_id: str, slot_date: date) -> list[time]:
    rows = db.query(Appointment.time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
        Appointment.status.in_(ACTIVE_SLOT_STATUSES),
    ).all()
    return [booked_time for (booked_time,) in rows]


def derive_bookable_slots(db: Session, doctor_id: str, slot_date: date, now: datetime | None = None) -> list[TimeSlot]:
    templates = db.query(DoctorAvailability).filter(
        DoctorAvailability.doctor_id == doctor_id,
        DoctorAvailability.day_of_week == day_of_week_for(slot_date),
        DoctorAvailability.is_active.is_(True),
    ).order_by(DoctorAvailability.start_time.asc()).all()

    if not templates:
        return []

    exceptions = db.query(UnavailableDate).filter(
        UnavailableDate.doctor_id == doctor_id,
        UnavailableDate.unavailable_date == slot_date,
    ).all()

    if any(exception.blocks_whole_day for exception in exceptions):
        return []

    booked_times = get_booked_times(db, doctor_id, slot_date)

    slots: dict[time, TimeSlot] = {}
    for template in templates:
        for slot in partition_window(template.start_time, template.end_time, template.duration_minutes):
            if now is not None and datetime.combine(slot_date, slot.start) <= now:
                continue
            if slot_is_blocked(slot, exceptions) or slot_is_booked(slot, booked_times):
                continue
            slots.setdefault(slot.start, slot)

    return [slots[start] for start in sorted(slots)]


def get_owned_template(db: Session, template_id: int, doctor_id: str) -> DoctorAvailability:
    template = db.query(DoctorAvailability).filter(
        DoctorAvailability.id == template_id,
        DoctorAvailability.doctor_id == doctor_id,
    ).first()

    if not template:
        raise NotFound('Availability window not found.')

    return template


def get_templates_for_day(db: Session, doctor_id: str, day_of_week: int) -> list[DoctorAvailability]:
    return db.query(DoctorAvailability).filter(
        DoctorAvailability.doctor_id == doctor_id,
        DoctorAvailability.day_of_week == day_of_week,
    ).all()


@router.get('/templates', response_model=list[AvailabilityTemplateResponse])
def list_templates(
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == current_user.id,
        ).order_by(DoctorAvailability.day_of_week.asc(), DoctorAvailability.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.post('/templates', response_model=AvailabilityTemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    data: AvailabilityTemplateRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = DoctorAvailability(
            doctor_id=current_user.id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            duration_minutes=data.duration_minutes,
            is_active=data.is_active,
        )
        validate_template(template, get_templates_for_day(db, current_user.id, data.day_of_week))

        db.add(template)
        db.commit()
        db.refresh(template)

        logger.info('Doctor %s added availability %s on day %s', current_user.id, template.id, template.day_of_week)
        return template
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not save availability for doctor %s', current_user.id)
        raise UpstreamFailure() from exc


@router.put('/templates/{template_id}', response_model=AvailabilityTemplateResponse)
def update_template(
    template_id: int,
    data: AvailabilityTemplateRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = get_owned_template(db, template_id, current_user.id)

        candidate = DoctorAvailability(
            id=template.id,
            doctor_id=current_user.id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            duration_minutes=data.duration_minutes,
            is_active=data.is_active,
        )
        validate_template(candidate, get_templates_for_day(db, current_user.id, data.day_of_week))

        template.day_of_week = data.day_of_week
        template.start_time = data.start_time
        template.end_time = data.end_time
        template.duration_minutes = data.duration_minutes
        template.is_active = data.is_active
        template.updated_at = datetime.now()

        db.commit()
        db.refresh(template)

        logger.info('Doctor %s updated availability %s', current_user.id, template.id)
        return template
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not update availability %s', template_id)
        raise UpstreamFailure() from exc


@router.delete('/templates/{template_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        template = get_owned_template(db, template_id, current_user.id)
        db.delete(template)
        db.commit()

        logger.info('Doctor %s deleted availability %s', current_user.id, template_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.get('/exceptions', response_model=list[UnavailableDateResponse])
def list_unavailable_exceptions(
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return db.query(UnavailableDate).filter(
            UnavailableDate.doctor_id == current_user.id,
            UnavailableDate.unavailable_date >= date.today(),
        ).order_by(UnavailableDate.unavailable_date.asc(), UnavailableDate.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.post('/exceptions', response_model=UnavailableDateResponse, status_code=status.HTTP_201_CREATED)
def add_unavailable_exception(
    data: UnavailableDateRequest,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    validate_exception_window(data.start_time, data.end_time)

    ensure_database_ready()

    try:
        exception = UnavailableDate(
            doctor_id=current_user.id,
            unavailable_date=data.unavailable_date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
        db.add(exception)
        db.commit()
        db.refresh(exception)

        logger.info('Doctor %s blocked %s', current_user.id, data.unavailable_date.isoformat())
        return exception
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not save unavailable date for doctor %s', current_user.id)
        raise UpstreamFailure() from exc


@router.delete('/exceptions/{exception_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_unavailable_exception(
    exception_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        exception = db.query(UnavailableDate).filter(
            UnavailableDate.id == exception_id,
            UnavailableDate.doctor_id == current_user.id,
        ).first()

        if not exception:
            raise NotFound('Unavailable date not found.')

        db.delete(exception)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.get('/doctors/{doctor_id}/slots', response_model=list[BookableSlotResponse])
def list_bookable_slots(
    doctor_id: str,
    slot_date: date = Query(..., alias='date'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        doctor = db.query(User).filter(User.id == doctor_id, User.role == DOCTOR_ROLE).first()
        if not doctor:
            raise NotFound('Doctor not found.')

        return [
            BookableSlotResponse(
                date=slot_date,
                start_time=slot.start,
                end_time=slot.end,
                duration_minutes=to_minutes(slot.end) - to_minutes(slot.start),
                display_time=convert_to_12_hour(slot.start),
            )
            for slot in derive_bookable_slots(db, doctor_id, slot_date, now=datetime.now())
        ]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc
