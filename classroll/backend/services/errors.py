# classroll/backend/services/errors.py


class ServiceError(Exception):
    """General exception class for the service layer."""
    pass


class ValidationError(ServiceError):
    """Malformed input: bad time strings, out-of-range durations, bad coordinates."""
    pass


class NotFoundError(ServiceError):
    """The session, student or record does not exist."""
    pass


class AuthorizationError(ServiceError):
    """The principal is not allowed to act on this resource."""
    pass


class AccessDeniedError(ServiceError):
    """The request came from outside the school network or geo-fence."""
    pass


class StateConflictError(ServiceError):
    """The operation does not fit the current state; re-fetch and decide again."""
    pass


class WindowClosedError(StateConflictError):
    pass


class AlreadyCheckedInError(StateConflictError):
    pass


class NotSignedInError(StateConflictError):
    pass


class AlreadyCheckedOutError(StateConflictError):
    pass


class TransientIOError(ServiceError):
    """The store or another backing service failed; the caller may retry."""
    pass
