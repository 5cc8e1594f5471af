"""Utility modules for the swap station engine."""

from swapstation.utils.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    ConflictError,
    ExhaustedError,
    NotFoundError,
    NotificationError,
    SwapStationError,
    ValidationError,
)
from swapstation.utils.retry import retry_with_backoff

__all__ = [
    "AccessDeniedError",
    "ConfigurationError",
    "ConflictError",
    "ExhaustedError",
    "NotFoundError",
    "NotificationError",
    "SwapStationError",
    "ValidationError",
    "retry_with_backoff",
]
