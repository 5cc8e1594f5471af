"""Custom exception hierarchy for the swap station engine."""

from typing import Any


class SwapStationError(Exception):
    """Base exception for all swap station errors."""

    status_code: int = 500
    error_code: str = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable message.
            details: Optional structured context for the caller.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SwapStationError):
    """Error in application configuration."""

    pass


class NotFoundError(SwapStationError):
    """A referenced entity does not exist."""

    status_code = 404
    error_code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None) -> None:
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id!r} not found"
        super().__init__(message, details={"resource": resource, "id": resource_id})


class ValidationError(SwapStationError):
    """Malformed input or an ownership mismatch."""

    status_code = 400
    error_code = "ERR_VALIDATION"


class ConflictError(SwapStationError):
    """The entity is in the wrong state for the requested transition."""

    status_code = 409
    error_code = "ERR_CONFLICT"


class ExhaustedError(SwapStationError):
    """A bounded retry budget ran out (e.g. confirmation code generation)."""

    status_code = 500
    error_code = "ERR_EXHAUSTED"


class AccessDeniedError(SwapStationError):
    """The caller's identity is not allowed to perform the operation."""

    status_code = 403
    error_code = "ERR_ACCESS_DENIED"


class NotificationError(SwapStationError):
    """Error delivering a notification to an external channel."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize notification error.

        Args:
            message: Error message.
            status_code: HTTP status code of the delivery attempt, if any.
        """
        super().__init__(message)
        self.delivery_status = status_code
