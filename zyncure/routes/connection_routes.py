import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zyncure.auth.dependencies import get_current_user
from zyncure.core.errors import (
    DuplicateRequest,
    InvalidTransition,
    NotFound,
    NotOwner,
    UpstreamFailure,
    ValidationError,
)
from zyncure.database import ensure_database_ready, get_db
from zyncure.models.connection import ACCEPTED, OPEN_STATUSES, PENDING, REJECTED, Connection
from zyncure.models.share import FileShare, SharedSymptomReport
from zyncure.models.user import DOCTOR_ROLE, PATIENT_ROLE, User

router = APIRouter(tags=['connections'])

logger = logging.getLogger(__name__)

CONNECTABLE_ROLES = {PATIENT_ROLE, DOCTOR_ROLE}
RESPONSE_STATUSES = {'accept': ACCEPTED, 'reject': REJECTED}


class CreateConnectionRequest(BaseModel):
    target_id: str

    @field_validator('target_id')
    @classmethod
    def validate_target_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Target account is required.')
        return normalized


class RespondToConnectionRequest(BaseModel):
    action: Literal['accept', 'reject']


class ConnectionResponse(BaseModel):
    id: int
    requester_id: str
    requester_type: str
    target_id: str
    target_type: str
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class PendingCountResponse(BaseModel):
    pending: int


def pair_filter(first_id: str, second_id: str):
    """Match connection rows for an unordered pair of accounts."""
    return or_(
        and_(Connection.requester_id == first_id, Connection.target_id == second_id),
        and_(Connection.requester_id == second_id, Connection.target_id == first_id),
    )


def find_open_connection(db: Session, first_id: str, second_id: str) -> Connection | None:
    return db.query(Connection).filter(
        pair_filter(first_id, second_id),
        Connection.status.in_(OPEN_STATUSES),
    ).first()


def has_accepted_connection(db: Session, first_id: str, second_id: str) -> bool:
    return db.query(Connection.id).filter(
        pair_filter(first_id, second_id),
        Connection.status == ACCEPTED,
    ).first() is not None


def validate_connection_pair(requester: User, target: User) -> None:
    if requester.id == target.id:
        raise ValidationError('You cannot connect with yourself.')

    if requester.role not in CONNECTABLE_ROLES or target.role not in CONNECTABLE_ROLES:
        raise ValidationError('Only patients and doctors can connect.')

    if requester.role == target.role:
        raise ValidationError('Connections must be between a patient and a doctor.')


def create_connection_request(db: Session, requester: User, target_id: str) -> Connection:
    target = db.query(User).filter(User.id == target_id).first()
    if not target:
        raise NotFound('Account not found.')

    validate_connection_pair(requester, target)

    existing = find_open_connection(db, requester.id, target.id)
    if existing:
        if existing.status == ACCEPTED:
            raise DuplicateRequest('You are already connected with this account.')
        raise DuplicateRequest('A connection request is already pending for this account.')

    connection = Connection(
        requester_id=requester.id,
        requester_type=requester.role,
        target_id=target.id,
        target_type=target.role,
        status=PENDING,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)

    logger.info('Connection request %s from %s to %s', connection.id, requester.id, target.id)
    return connection


def respond_to_request(db: Session, connection_id: int, responder: User, action: str) -> Connection:
    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if not connection:
        raise NotFound('Connection request not found.')

    if connection.target_id != responder.id:
        raise NotOwner('Only the recipient of a connection request can respond to it.')

    if connection.status != PENDING:
        raise InvalidTransition(f'This connection request was already {connection.status}.')

    connection.status = RESPONSE_STATUSES[action]
    connection.updated_at = datetime.now()
    db.commit()
    db.refresh(connection)

    logger.info('Connection request %s %s by %s', connection.id, connection.status, responder.id)
    return connection


def remove_connection(db: Session, connection_id: int, user: User) -> int:
    """Delete a connection and deactivate grants between the pair.

    Returns the number of grants that were deactivated.
    """
    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if not connection:
        raise NotFound('Connection not found.')

    if user.id not in (connection.requester_id, connection.target_id):
        raise NotOwner('Only a party to this connection can remove it.')

    other_id = connection.other_party(user.id)
    now = datetime.now()
    revoked = db.query(FileShare).filter(
        or_(
            and_(FileShare.owner_id == user.id, FileShare.shared_with_id == other_id),
            and_(FileShare.owner_id == other_id, FileShare.shared_with_id == user.id),
        ),
        FileShare.is_active.is_(True),
    ).update({FileShare.is_active: False, FileShare.updated_at: now}, synchronize_session=False)
    revoked += db.query(SharedSymptomReport).filter(
        or_(
            and_(SharedSymptomReport.shared_by == user.id, SharedSymptomReport.shared_with == other_id),
            and_(SharedSymptomReport.shared_by == other_id, SharedSymptomReport.shared_with == user.id),
        ),
        SharedSymptomReport.is_active.is_(True),
    ).update({SharedSymptomReport.is_active: False, SharedSymptomReport.updated_at: now}, synchronize_session=False)

    db.delete(connection)
    db.commit()

    logger.info('Connection %s removed by %s; %s shares deactivated', connection_id, user.id, revoked)
    return revoked


@router.post('', response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
def create_connection(
    data: CreateConnectionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return create_connection_request(db, current_user, data.target_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not create connection request for %s', current_user.id)
        raise UpstreamFailure() from exc


@router.post('/{connection_id}/respond', response_model=ConnectionResponse)
def respond_to_connection(
    connection_id: int,
    data: RespondToConnectionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return respond_to_request(db, connection_id, current_user, data.action)
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.delete('/{connection_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_connection(
    connection_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        remove_connection(db, connection_id, current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise UpstreamFailure() from exc


@router.get('', response_model=list[ConnectionResponse])
def list_connections(
    status_value: str | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Connection).filter(
            or_(Connection.requester_id == current_user.id, Connection.target_id == current_user.id),
        )

        if status_value:
            normalized = status_value.strip().lower()
            if normalized not in (PENDING, ACCEPTED, REJECTED):
                raise ValidationError('Invalid connection status.')
            query = query.filter(Connection.status == normalized)

        return query.order_by(Connection.created_at.desc()).all()
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc


@router.get('/pending-count', response_model=PendingCountResponse)
def count_pending_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        pending = db.query(Connection).filter(
            Connection.target_id == current_user.id,
            Connection.status == PENDING,
        ).count()
        return PendingCountResponse(pending=pending)
    except SQLAlchemyError as exc:
        raise UpstreamFailure() from exc
