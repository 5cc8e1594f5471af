"""Logging configuration using structlog with sweep tracking."""

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from swapstation.config.settings import Settings


@dataclass
class SweepStats:
    """Statistics for one run of a reconciliation job."""

    job_name: str
    items_found: int = 0
    items_changed: int = 0
    items_skipped: int = 0
    notifications_sent: int = 0
    errors: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    duration_seconds: float = 0.0

    def finish(self) -> None:
        """Mark the run as complete and calculate duration."""
        self.end_time = datetime.now(timezone.utc)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def add_error(self, item_id: Any, error: str) -> None:
        """Record a failure for a single item."""
        self.errors.append(f"{item_id}: {error}")

    @property
    def success(self) -> bool:
        """Check if every item was processed without error."""
        return len(self.errors) == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "job": self.job_name,
            "items_found": self.items_found,
            "items_changed": self.items_changed,
            "items_skipped": self.items_skipped,
            "notifications_sent": self.notifications_sent,
            "error_count": len(self.errors),
            "duration_seconds": self.duration_seconds,
            "success": self.success,
        }


class OperationTimer:
    """Context manager timing a block and logging its outcome.

    With ``slow_after`` set, a block that outlasts it is logged as a warning,
    which for a sweep means the next tick of the same job was skipped.
    """

    def __init__(
        self,
        operation_name: str,
        logger: Any = None,
        slow_after: float | None = None,
        **context: Any,
    ) -> None:
        self.operation_name = operation_name
        self.logger = (logger or structlog.get_logger()).bind(operation=operation_name, **context)
        self.slow_after = slow_after
        self._started: float | None = None
        self._elapsed: float | None = None

    def __enter__(self) -> "OperationTimer":
        self._started = time.monotonic()
        self._elapsed = None
        self.logger.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._elapsed = time.monotonic() - self._started
        elapsed = round(self._elapsed, 3)

        if exc_type is not None:
            self.logger.error(f"Failed {self.operation_name}", duration_seconds=elapsed, error=str(exc_val))
        elif self.slow_after is not None and self._elapsed > self.slow_after:
            self.logger.warning(
                f"Slow {self.operation_name}", duration_seconds=elapsed, slow_after=self.slow_after
            )
        else:
            self.logger.info(f"Completed {self.operation_name}", duration_seconds=elapsed)

    @property
    def duration(self) -> float:
        """Elapsed seconds, still running if the block has not exited."""
        if self._started is None:
            return 0.0
        if self._elapsed is not None:
            return self._elapsed
        return time.monotonic() - self._started


# Library loggers that flood the console at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def build_handlers(settings: Settings, log_level: int) -> list[logging.Handler]:
    """Create the console handler and, if configured, the rotating file handler."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                filename=log_path,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )

    for handler in handlers:
        handler.setLevel(log_level)
    return handlers


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the standard library root logger.

    Events are rendered by structlog and written through stdlib handlers, so
    the console and the log file receive the same lines. SQL echo is left to
    ``create_engine`` at DEBUG level.

    Args:
        settings: Application settings containing logging configuration.
    """
    log_level = getattr(logging, settings.log_level)

    logging.basicConfig(
        level=log_level,
        handlers=build_handlers(settings, log_level),
        format="%(message)s",
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if sys.stdout.isatty():
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
        processors = [*shared_processors, renderer]
    else:
        processors = [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Optional logger name (typically __name__).

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)
