"""Domain errors raised by services.

Each error carries the HTTP status the API layer answers with, so route
handlers can let them propagate to a single exception handler.
"""


class ServiceError(Exception):
    """Base class for expected, user-facing failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError, ValueError):
    """A required field is missing or a value is malformed."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    """The caller is authenticated but lacks the capability."""
    status_code = 403


class ConflictError(ServiceError):
    """The entity is not in a state that allows the requested transition."""
    status_code = 409
