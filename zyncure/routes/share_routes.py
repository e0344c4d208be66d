import logging
from datetime import datetime, timedelta
from typing import Literal

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zyncure.auth.dependencies import get_current_patient, get_current_user
from zyncure.core.errors import Forbidden, NotFound, NotOwner, UpstreamFailure, ValidationError
from zyncure.database import ensure_database_ready, get_db
from zyncure.models.record import Folder, MedicalFile
from zyncure.models.share import FILE_SHARE, FOLDER_SHARE, FileShare, SharedSymptomReport
from zyncure.models.user import User
from zyncure.routes.connection_routes import has_accepted_connection

router = APIRouter(tags=['shares'])

logger = logging.getLogger(__name__)

FIXED_OFFSETS = {
    'hours': lambda value: timedelta(hours=value),
    'days': lambda value: timedelta(days=value),
    'weeks': lambda value: timedelta(weeks=value),
    'months': lambda value: relativedelta(months=value),
}
RESOURCE_MODELS = {FILE_SHARE: MedicalFile, FOLDER_SHARE: Folder}
# Access periods offered when sharing a symptom report.
SYMPTOM_ACCESS_DURATIONS = {
    '1 day': ('days', 1),
    '2 days': ('days', 2),
    '1 week': ('weeks', 1),
    '1 month': ('months', 1),
}


class ShareDuration(BaseModel):
    unit: Literal['none', 'hours', 'days', 'weeks', 'months', 'custom'] = 'hours'
    value: int | None = 24
    custom_date: datetime | None = None


class CreateShareRequest(BaseModel):
    shared_with_id: str
    resource_type: Literal['file', 'folder']
    resource_id: int
    duration: ShareDuration = ShareDuration()


class ShareResponse(BaseModel):
    id: int
    owner_id: str
    shared_with_id: str
    resource_type: str
    resource_id: int
    expires_at: datetime | None = None
    is_active: bool
    is_effective: bool
    created_at: datetime | None = None


class CreateSymptomShareRequest(BaseModel):
    shared_with_id: str
    access_duration: Literal['1 day', '2 days', '1 week', '1 month'] = '1 day'
    symptom_duration: str | None = None
    pdf_filename: str
    report_url: str

    @field_validator('shared_with_id', 'pdf_filename', 'report_url')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field is required.')
        return normalized

    @field_validator('symptom_duration')
    @classmethod
    def normalize_symptom_duration(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class SymptomShareResponse(BaseModel):
    id: int
    shared_by: str
    shared_with: str
    symptom: str
    symptom_duration: str | None = None
    access_duration: str
    expires_at: datetime | None = None
    pdf_filename: str
    report_url: str
    is_active: bool
    is_effective: bool
    created_at: datetime | None = None


def compute_expiration(duration: ShareDuration, now: datetime) -> datetime | None:
    """Expiry for a new grant measured from ``now``; None means it never expires."""
    if duration.unit == 'none':
        return None

    if duration.unit == 'custom':
        if duration.custom_date is None:
            raise ValidationError('Choose an expiration date.')

        expires_at = duration.custom_date
        if expires_at.tzinfo is not None:
            expires_at = expires_at.astimezone().replace(tzinfo=None)

        if expires_at <= now:
            raise ValidationError('Expiration date must be in the future.')

        return expires_at

    if duration.value is None or duration.value <= 0:
        raise ValidationError('Share duration must be a positive number.')

    return now + FIXED_OFFSETS[duration.unit](duration.value)


def is_grant_effective(grant: FileShare | SharedSymptomReport, now: datetime) -> bool:
    return bool(grant.is_active) and (grant.expires_at is None or grant.expires_at > now)


def to_response(grant: FileShare, now: datetime) -> ShareResponse:
    return ShareResponse(
        id=grant.id,
        owner_id=grant.owner_id,
        shared_with_id=grant.shared_with_id,
        resource_type=grant.share_type,
        resource_id=grant.resource_id,
        expires_at=grant.expires_at,
        is_active=grant.is_active,
        is_effective=is_grant_effective(grant, now),
        created_at=grant.created_at,
    )


def ensure_resource_owner(db: Session, owner_id: str, resource_type: str, resource_id: int) -> None:
    model = RESOURCE_MODELS[resource_type]
    resource = db.query(model.id).filter(model.id == resource_id, model.owner_id == owner_id).first()

    if resource is None:
        raise NotFound(f'{resource_type.capitalize()} not found or you do not own this {resource_type}.')


def get_share_recipient(db: Session, owner: User, shared_with_id: str) -> User:
    if shared_with_id == owner.id:
        raise ValidationError('You cannot share with yourself.')

    recipient = db.query(User).filter(User.id == shared_with_id).first()
    if not recipient:
        raise NotFound('Account not found.')

    if not has_accepted_connection(db, owner.id, recipient.id):
        raise Forbidden('You can only share with accounts you are connected to.')

    return recipient


def create_share_grant(
    db: Session,
    owner: User,
    shared_with_id: str,
    resource_type: str,
    resource_id: int,
    duration: ShareDuration,
    now: datetime | None = None,
) -> FileShare:
    now = now or datetime.now()
    recipient = get_share_recipient(db, owner, shared_with_id)
    ensure_resource_owner(db, owner.id, resource_type, resource_id)
    expires_at = compute_expiration(duration, now)

    grant = FileShare(
        owner_id=owner.id,
        shared_with_id=recipient.id,
        share_type=resource_type,
        resource_id=resource_id,
        expires_at=expires_at,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(grant)
    db.commit()
    db.refresh(grant)

    logger.info(
        'Owner %s shared %s %s with %s until %s',
        owner.id,
        resource_type,
        resource_id,
        recipient.id,
        expires_at.isoformat() if expires_at else 'no expiry',
    )
    return grant


def revoke_share_grant(db: Session, grant_id: int, owner: User) -> FileShare:
    grant = db.query(FileShare).filter(FileShare.id == grant_id).first()
    if not grant:
        raise NotFound('Share not found.')

    if grant.owner_id != owner.id:
        raise NotOwner('Only the owner can revoke this share.')

    if grant.is_active:
        grant.is_active = False
        grant.updated_at = datetime.now()
        db.commit()
        db.refresh(grant)
        logger.info('Share %s revoked by %s', grant.id, owner.id)

    return grant


@router.post('', response_model=ShareResponse, status_code=status.HTTP_201_CREATED)
def create_share(
    data: CreateShareRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        grant = create_share_grant(
            db,
            current_user,
            data.shared_with_id.strip(),
            data.resource_type,
            data.resource_id,
            data.duration,
            now=now,
        )
        return to_response(grant, now)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not create share for %s', current_user.id)
        raise UpstreamFailure() from exc


@router.post('/{share_id}/revoke', response_model=ShareResponse)
def revoke_share(
    share_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        grant = revoke_share_grant(db, share_id, current_user)
        return to_response(grant, datetime.now())
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.get('/owned', response_model=list[ShareResponse])
def list_owned_shares(
    resource_type: Literal['file', 'folder'] | None = Query(default=None),
    resource_id: int | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        query = db.query(FileShare).filter(FileShare.owner_id == current_user.id)

        if resource_type:
            query = query.filter(FileShare.share_type == resource_type)
        if resource_id is not None:
            query = query.filter(FileShare.resource_id == resource_id)
        if not include_inactive:
            query = query.filter(
                FileShare.is_active.is_(True),
                or_(FileShare.expires_at.is_(None), FileShare.expires_at > now),
            )

        grants = query.order_by(FileShare.created_at.desc()).all()
        return [to_response(grant, now) for grant in grants]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.get('/received', response_model=list[ShareResponse])
def list_received_shares(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        grants = db.query(FileShare).filter(
            FileShare.shared_with_id == current_user.id,
            FileShare.is_active.is_(True),
            or_(FileShare.expires_at.is_(None), FileShare.expires_at > now),
        ).order_by(FileShare.created_at.desc()).all()

        return [to_response(grant, now) for grant in grants]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


def to_symptom_response(report: SharedSymptomReport, now: datetime) -> SymptomShareResponse:
    return SymptomShareResponse(
        id=report.id,
        shared_by=report.shared_by,
        shared_with=report.shared_with,
        symptom=report.symptom,
        symptom_duration=report.symptom_duration,
        access_duration=report.access_duration,
        expires_at=report.expires_at,
        pdf_filename=report.pdf_filename,
        report_url=report.report_url,
        is_active=report.is_active,
        is_effective=is_grant_effective(report, now),
        created_at=report.created_at,
    )


def create_symptom_share(
    db: Session,
    owner: User,
    shared_with_id: str,
    access_duration: str,
    pdf_filename: str,
    report_url: str,
    symptom_duration: str | None = None,
    now: datetime | None = None,
) -> SharedSymptomReport:
    """Grant a connected account access to an already uploaded symptom report."""
    if access_duration not in SYMPTOM_ACCESS_DURATIONS:
        raise ValidationError('Choose an access duration of 1 day, 2 days, 1 week or 1 month.')

    now = now or datetime.now()
    recipient = get_share_recipient(db, owner, shared_with_id)
    unit, value = SYMPTOM_ACCESS_DURATIONS[access_duration]
    expires_at = compute_expiration(ShareDuration(unit=unit, value=value), now)

    report = SharedSymptomReport(
        shared_by=owner.id,
        shared_with=recipient.id,
        symptom_duration=symptom_duration,
        access_duration=access_duration,
        expires_at=expires_at,
        pdf_filename=pdf_filename,
        report_url=report_url,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(report)
    db.commit()
    db.refresh(report)

    logger.info('Owner %s shared symptom report %s with %s until %s', owner.id, report.id, recipient.id, expires_at.isoformat())
    return report


def revoke_symptom_share(db: Session, report_id: int, owner: User) -> SharedSymptomReport:
    report = db.query(SharedSymptomReport).filter(SharedSymptomReport.id == report_id).first()
    if not report:
        raise NotFound('Shared report not found.')

    if report.shared_by != owner.id:
        raise NotOwner('Only the owner can revoke this share.')

    if report.is_active:
        report.is_active = False
        report.updated_at = datetime.now()
        db.commit()
        db.refresh(report)
        logger.info('Symptom report share %s revoked by %s', report.id, owner.id)

    return report


@router.post('/symptom-reports', response_model=SymptomShareResponse, status_code=status.HTTP_201_CREATED)
def share_symptom_report(
    data: CreateSymptomShareRequest,
    current_user: User = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        report = create_symptom_share(
            db,
            current_user,
            data.shared_with_id,
            data.access_duration,
            data.pdf_filename,
            data.report_url,
            symptom_duration=data.symptom_duration,
            now=now,
        )
        return to_symptom_response(report, now)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not share symptom report for %s', current_user.id)
        raise UpstreamFailure() from exc


@router.post('/symptom-reports/{report_id}/revoke', response_model=SymptomShareResponse)
def revoke_symptom_report_share(
    report_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        report = revoke_symptom_share(db, report_id, current_user)
        return to_symptom_response(report, datetime.now())
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.get('/symptom-reports/owned', response_model=list[SymptomShareResponse])
def list_owned_symptom_shares(
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        query = db.query(SharedSymptomReport).filter(SharedSymptomReport.shared_by == current_user.id)

        if not include_inactive:
            query = query.filter(
                SharedSymptomReport.is_active.is_(True),
                or_(SharedSymptomReport.expires_at.is_(None), SharedSymptomReport.expires_at > now),
            )

        reports = query.order_by(SharedSymptomReport.created_at.desc()).all()
        return [to_symptom_response(report, now) for report in reports]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.get('/symptom-reports/received', response_model=list[SymptomShareResponse])
def list_received_symptom_shares(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        now = datetime.now()
        reports = db.query(SharedSymptomReport).filter(
            SharedSymptomReport.shared_with == current_user.id,
            SharedSymptomReport.is_active.is_(True),
            or_(SharedSymptomReport.expires_at.is_(None), SharedSymptomReport.expires_at > now),
        ).order_by(SharedSymptomReport.created_at.desc()).all()

        return [to_symptom_response(report, now) for report in reports]
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc
