"""
Error taxonomy shared by the availability engine and the hangout lifecycle.

Validation and invalid-transition errors are always surfaced to the caller.
Calendar errors are caught by the services and degrade. Persistence errors
are fatal to the operation that hit them.
"""


class HangoutSchedulerError(Exception):
    """Base exception for scheduler operations."""

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        error_code: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.error_code = error_code
        self.recoverable = recoverable


class ValidationError(HangoutSchedulerError):
    """Malformed caller input, rejected before any I/O where possible."""

    def __init__(self, message: str, field: str | None = None, user_id: str | None = None):
        super().__init__(message, user_id=user_id, error_code="validation_error", recoverable=False)
        self.field = field


class SchedulingConflictError(ValidationError):
    """The creator's own calendar is busy for the proposed window."""

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message, field="start_date", user_id=user_id)
        self.error_code = "scheduling_conflict"


class AccessUnavailable(HangoutSchedulerError):
    """A user's calendar cannot be read (no credential, no permission)."""

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message, user_id=user_id, error_code="access_unavailable")


class CalendarTransportError(HangoutSchedulerError):
    """Network or auth failure while calling the calendar API."""

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, user_id=user_id, error_code="calendar_transport")
        self.status_code = status_code


class PersistenceError(HangoutSchedulerError):
    """Read or write failure against the durable store."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message, error_code="persistence_error", recoverable=recoverable)
        self.operation = operation


class InvalidTransition(HangoutSchedulerError):
    """The request is not in a state that allows the attempted operation."""

    def __init__(self, message: str, request_id: str, current_status: str, attempted: str):
        super().__init__(message, error_code="invalid_transition", recoverable=False)
        self.request_id = request_id
        self.current_status = current_status
        self.attempted = attempted


class HangoutNotFoundError(HangoutSchedulerError):
    """No hangout request exists with the given id."""

    def __init__(self, request_id: str):
        super().__init__(
            f"Hangout request {request_id} not found",
            error_code="not_found",
            recoverable=False,
        )
        self.request_id = request_id
