import logging
import secrets
import string
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zyncure import notifications
from zyncure.auth.passwords import verify_password
from zyncure.core import config
from zyncure.database import get_db
from zyncure.models.otp import UserOtp
from zyncure.models.user import User

router = APIRouter(tags=['otp'])

logger = logging.getLogger(__name__)


def _json_response(status_code: int, **content) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


def _error(status_code: int, message: str) -> JSONResponse:
    return _json_response(status_code, success=False, error=message)


async def read_json_body(request: Request) -> dict | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def generate_otp(length: int | None = None) -> str:
    length = length or config.OTP_LENGTH
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def issue_otp(db: Session, user: User, now: datetime | None = None) -> str:
    """Replace the user's unused codes with a fresh one and return it."""
    now = now or datetime.now()
    otp = generate_otp()

    db.query(UserOtp).filter(
        UserOtp.user_id == user.id,
        UserOtp.used.is_(False),
    ).delete(synchronize_session=False)

    db.add(
        UserOtp(
            user_id=user.id,
            email=user.email,
            otp_code=otp,
            expires_at=now + timedelta(minutes=config.OTP_EXPIRES_MINUTES),
            used=False,
            created_at=now,
        )
    )
    db.commit()
    return otp


def _issue_and_send(db: Session, user: User) -> JSONResponse:
    try:
        otp = issue_otp(db, user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to store OTP for user %s', user.id)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to generate OTP')

    try:
        notifications.send_otp_email(user.email, otp)
    except notifications.EmailDeliveryError as exc:
        logger.error('Failed to send OTP email to %s: %s', user.email, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to send OTP email')

    logger.info('OTP sent to %s', user.email)
    return _json_response(status.HTTP_200_OK, success=True, message='OTP sent successfully')


@router.post('/request')
async def request_otp(request: Request, db: Session = Depends(get_db)):
    payload = await read_json_body(request)
    if payload is None:
        return _error(status.HTTP_400_BAD_REQUEST, 'Invalid JSON body')

    email = _clean(payload.get('email')).lower()
    password = payload.get('password') if isinstance(payload.get('password'), str) else ''
    if not email or not password:
        return _error(status.HTTP_400_BAD_REQUEST, 'Email and password are required')

    try:
        user = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError:
        logger.exception('Credential lookup failed for %s', email)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Internal server error')

    if user is None or not verify_password(password, user.hashed_password):
        logger.info('OTP request rejected for %s: invalid credentials', email)
        return _error(status.HTTP_401_UNAUTHORIZED, 'Invalid credentials')

    return _issue_and_send(db, user)


@router.post('/send')
async def send_otp(request: Request, db: Session = Depends(get_db)):
    payload = await read_json_body(request)
    if payload is None:
        return _error(status.HTTP_400_BAD_REQUEST, 'Invalid JSON body')

    user_id = _clean(payload.get('user_id'))
    if not user_id:
        return _error(status.HTTP_400_BAD_REQUEST, 'user_id is required')

    try:
        user = db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError:
        logger.exception('User lookup failed for %s', user_id)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Internal server error')

    if user is None:
        return _error(status.HTTP_400_BAD_REQUEST, 'User not found')

    return _issue_and_send(db, user)


@router.post('/verify')
async def verify_otp(request: Request, db: Session = Depends(get_db)):
    payload = await read_json_body(request)
    if payload is None:
        return _error(status.HTTP_400_BAD_REQUEST, 'Invalid JSON body')

    email = _clean(payload.get('email')).lower()
    # Clients send otp_code; older ones send otp. Numeric codes are accepted.
    raw_otp = payload.get('otp_code', payload.get('otp'))
    otp = _clean(str(raw_otp) if isinstance(raw_otp, int) and not isinstance(raw_otp, bool) else raw_otp)
    if not email or not otp:
        return _error(status.HTTP_400_BAD_REQUEST, 'Email and OTP are required')

    try:
        record = db.query(UserOtp).filter(
            UserOtp.email == email,
            UserOtp.otp_code == otp,
            UserOtp.used.is_(False),
        ).order_by(UserOtp.created_at.desc()).first()

        if record is None:
            return _error(status.HTTP_400_BAD_REQUEST, 'Invalid OTP')

        if record.expires_at <= datetime.now():
            return _error(status.HTTP_400_BAD_REQUEST, 'OTP has expired')

        user_id = record.user_id
        record.used = True
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('OTP verification failed for %s', email)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Internal server error')

    logger.info('OTP verified for %s', email)
    return _json_response(
        status.HTTP_200_OK,
        success=True,
        message='OTP verified successfully',
        user_id=user_id,
    )
