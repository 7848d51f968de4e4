# classroll/backend/api/utilities/errors.py

from fastapi import HTTPException, status

from ...services.errors import (
    AccessDeniedError, AuthorizationError, NotFoundError, ServiceError, StateConflictError,
    TransientIOError, ValidationError
)


def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service-layer error onto the HTTP status the client should see."""
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, (AuthorizationError, AccessDeniedError)):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, StateConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, TransientIOError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))
