"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Schedule conflict: the requested interval overlaps an active appointment."""

    def __init__(self, message: str = "Conflict", conflicting_ids: list[str] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)
        self.conflicting_ids = conflicting_ids or []


class InvalidTransitionException(AppException):
    """Requested status change is not an edge of the appointment lifecycle."""

    def __init__(self, current: str, target: str):
        """Initialize with 409 status code."""
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition: {current} -> {target} is not allowed",
            status_code=409,
        )


class InvalidStateException(AppException):
    """Operation is not permitted in the appointment's current state."""

    def __init__(self, message: str = "Invalid state"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class InvariantViolationException(AppException):
    """A computed result contradicts a data invariant. Indicates a bug, never user error."""

    def __init__(self, message: str = "Invariant violation"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)
