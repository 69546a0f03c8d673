class EventServiceError(Exception):
    """Base class for errors raised by the event service.

    ``status_code`` is the HTTP status the routing layer answers with.
    """

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EventServiceError):
    """Raised when event fields are missing or out of range."""

    status_code = 400


class NotFound(EventServiceError):
    """Raised when no record exists for the given id."""

    status_code = 404


class Forbidden(EventServiceError):
    """Raised when the caller is neither the organizer nor an admin."""

    status_code = 403


class Conflict(EventServiceError):
    """Raised when a registration rule is violated (full, duplicate, not registered)."""

    status_code = 400


class Internal(EventServiceError):
    """Raised when the store fails unexpectedly."""

    status_code = 500
