from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from zyncure.auth import jwt_handler
from zyncure.core.errors import Forbidden
from zyncure.database import SessionLocal
from zyncure.models.user import DOCTOR_ROLE, PATIENT_ROLE, User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def ensure_role(user: User, role: str, detail: str) -> User:
    if user.role != role:
        raise Forbidden(detail)
    return user


def get_current_doctor(current_user: User = Depends(get_current_user)) -> User:
    return ensure_role(current_user, DOCTOR_ROLE, "Only doctors can access this resource.")


def get_current_patient(current_user: User = Depends(get_current_user)) -> User:
    return ensure_role(current_user, PATIENT_ROLE, "Only patients can access this resource.")
