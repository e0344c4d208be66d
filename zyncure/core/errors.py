"""Error taxonomy shared by every router.

Each error is an ``HTTPException`` so it propagates out of a route function
and is rendered by FastAPI with its status code and ``detail``.
"""

from fastapi import HTTPException, status


class ZynCureError(HTTPException):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Unexpected error.'

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=self.http_status, detail=detail or self.default_detail)


class ValidationError(ZynCureError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'


class Forbidden(ZynCureError):
    http_status = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have access to this resource.'


class NotOwner(Forbidden):
    default_detail = 'Only the owner can perform this action.'


class NotFound(ZynCureError):
    http_status = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'


class ConflictError(ZynCureError):
    http_status = status.HTTP_409_CONFLICT
    default_detail = 'This change conflicts with existing data.'


class DuplicateRequest(ConflictError):
    default_detail = 'A connection request already exists between these accounts.'


class SlotUnavailable(ConflictError):
    default_detail = 'This time slot is not available.'


class InvalidTransition(ConflictError):
    default_detail = 'This status change is not allowed.'


class AlreadyTerminal(InvalidTransition):
    default_detail = 'This appointment is already closed.'


class UpstreamFailure(ZynCureError):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
