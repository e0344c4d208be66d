import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from zyncure import notifications
from zyncure.auth.dependencies import get_current_doctor, get_current_patient
from zyncure.core.errors import (
    AlreadyTerminal,
    InvalidTransition,
    NotFound,
    NotOwner,
    SlotUnavailable,
    UpstreamFailure,
    ValidationError,
)
from zyncure.database import ensure_database_ready, get_db
from zyncure.models.appointment import (
    ALL_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    PENDING,
    REQUESTED,
    RESCHEDULED,
    TERMINAL_STATUSES,
    Appointment,
    canonical_status,
)
from zyncure.models.user import DOCTOR_ROLE, User
from zyncure.routes.availability_routes import convert_to_12_hour, derive_bookable_slots

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_REASON_LENGTH = 600

CONFIRM = 'confirm'
COMPLETE = 'complete'
CANCEL = 'cancel'
RESCHEDULE = 'reschedule'

# action -> (statuses it may start from, resulting status)
TRANSITIONS = {
    CONFIRM: (frozenset({REQUESTED, PENDING}), CONFIRMED),
    COMPLETE: (frozenset({CONFIRMED}), COMPLETED),
    CANCEL: (frozenset({REQUESTED, PENDING, CONFIRMED, RESCHEDULED}), CANCELLED),
    RESCHEDULE: (frozenset({CONFIRMED}), RESCHEDULED),
}
ACTIONS_WITH_REASON = {CANCEL, RESCHEDULE}


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_REASON_LENGTH:
        raise ValueError(f'Reason must be {MAX_APPOINTMENT_REASON_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    doctor_id: str
    date: date
    time: time
    reason: str | None = None

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Doctor is required.')
        return normalized

    @field_validator('time')
    @classmethod
    def strip_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class AppointmentActionRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: str
    patient_id: str
    date: date
    time: time
    display_time: str
    status: str
    reason: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AppointmentStatsResponse(BaseModel):
    total: int
    requested: int
    confirmed: int
    cancelled: int
    completed: int
    rescheduled: int


def to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        date=appointment.date,
        time=appointment.time,
        display_time=convert_to_12_hour(appointment.time),
        status=appointment.canonical_status,
        reason=appointment.reason,
        cancellation_reason=appointment.cancellation_reason,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )


def apply_transition(appointment: Appointment, action: str, reason: str | None = None, now: datetime | None = None) -> Appointment:
    """Move an appointment through the lifecycle or raise without touching it."""
    allowed_from, target_status = TRANSITIONS[action]
    current_status = canonical_status(appointment.status)

    if current_status in TERMINAL_STATUSES:
        raise AlreadyTerminal(f'This appointment is already {current_status}.')

    if appointment.status not in allowed_from and current_status not in allowed_from:
        raise InvalidTransition(f'Cannot {action} an appointment that is {current_status}.')

    appointment.status = target_status
    appointment.updated_at = now or datetime.now()
    if action in ACTIONS_WITH_REASON and reason:
        appointment.cancellation_reason = reason

    return appointment


def status_filter_values(status_value: str) -> list[str]:
    """Stored values matching a requested status, including the legacy alias."""
    canonical = canonical_status(status_value)
    if canonical not in ALL_STATUSES:
        raise ValidationError('Invalid appointment status.')
    if canonical == REQUESTED:
        return [REQUESTED, PENDING]
    return [canonical]


def get_doctor_appointment(db: Session, appointment_id: int, doctor_id: str) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()

    if not appointment:
        raise NotFound('Appointment not found.')

    if appointment.doctor_id != doctor_id:
        raise NotOwner('This appointment does not belong to you.')

    return appointment


def _notify_patient(db: Session, appointment: Appointment, headline: str) -> None:
    # Runs after the transition committed; a failed lookup only skips the notice.
    try:
        patient = db.query(User).filter(User.id == appointment.patient_id).first()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not load patient for appointment %s notice', appointment.id)
        return

    notifications.notify_appointment_change(
        patient.email if patient else None,
        headline,
        appointment.date,
        appointment.time,
        appointment.cancellation_reason,
    )


def _run_transition(appointment_id: int, action: str, reason: str | None, current_user: User, db: Session) -> AppointmentResponse:
    ensure_database_ready()

    try:
        appointment = get_doctor_appointment(db, appointment_id, current_user.id)
        previous_status = appointment.status

        apply_transition(appointment, action, reason)
        db.commit()
        db.refresh(appointment)

        logger.info(
            'Appointment %s moved from %s to %s by doctor %s',
            appointment.id,
            previous_status,
            appointment.status,
            current_user.id,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not %s appointment %s', action, appointment_id)
        raise UpstreamFailure() from exc

    _notify_patient(db, appointment, f'Your appointment has been {appointment.status}.')
    return to_response(appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def request_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = db.query(User).filter(User.id == data.doctor_id, User.role == DOCTOR_ROLE).first()
        if not doctor:
            raise NotFound('Doctor not found.')

        bookable_starts = {slot.start for slot in derive_bookable_slots(db, doctor.id, data.date, now=datetime.now())}
        if data.time not in bookable_starts:
            raise SlotUnavailable()

        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=current_user.id,
            date=data.date,
            time=data.time,
            status=REQUESTED,
            reason=data.reason,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info(
            'Patient %s requested appointment %s with doctor %s on %s %s',
            current_user.id,
            appointment.id,
            doctor.id,
            data.date.isoformat(),
            data.time.isoformat(timespec='minutes'),
        )
    except IntegrityError as exc:
        # The partial unique index rejected a concurrent booking of the same slot.
        db.rollback()
        raise SlotUnavailable('This time slot was just booked by someone else.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not book appointment for patient %s', current_user.id)
        raise UpstreamFailure() from exc

    notifications.notify_appointment_change(
        doctor.email,
        f'New appointment request from {current_user.full_name}',
        appointment.date,
        appointment.time,
        appointment.reason,
    )
    return to_response(appointment)


@router.get('/doctor', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    appointment_date: date | None = Query(default=None, alias='date'),
    status_value: str | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.doctor_id == current_user.id)

        if appointment_date is not None:
            query = query.filter(Appointment.date == appointment_date)

        if status_value and status_value.strip().lower() != 'all':
            query = query.filter(Appointment.status.in_(status_filter_values(status_value)))

        appointments = query.order_by(Appointment.date.asc(), Appointment.time.asc()).all()
        return [to_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = db.query(Appointment).filter(
            Appointment.patient_id == current_user.id,
        ).order_by(Appointment.date.asc(), Appointment.time.asc()).all()

        return [to_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.get('/stats', response_model=AppointmentStatsResponse)
def get_appointment_stats(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    if start_date and end_date and start_date > end_date:
        raise ValidationError('Start date must be on or before end date.')

    ensure_database_ready()

    try:
        query = db.query(Appointment.status, func.count(Appointment.id)).filter(
            Appointment.doctor_id == current_user.id,
        )
        if start_date:
            query = query.filter(Appointment.date >= start_date)
        if end_date:
            query = query.filter(Appointment.date <= end_date)

        counts = {value: 0 for value in (REQUESTED, CONFIRMED, CANCELLED, COMPLETED, RESCHEDULED)}
        total = 0
        for stored_status, count in query.group_by(Appointment.status).all():
            total += count
            key = canonical_status(stored_status)
            if key in counts:
                counts[key] += count

        return AppointmentStatsResponse(total=total, **counts)
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    return _run_transition(appointment_id, CONFIRM, None, current_user, db)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    return _run_transition(appointment_id, COMPLETE, None, current_user, db)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: AppointmentActionRequest | None = None,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    return _run_transition(appointment_id, CANCEL, data.reason if data else None, current_user, db)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: AppointmentActionRequest | None = None,
    current_user: User = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    return _run_transition(appointment_id, RESCHEDULE, data.reason if data else None, current_user, db)
