"""
Structured logging configuration using structlog.
Provides job-scoped logging with automatic context injection.
"""

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

import structlog
from structlog.types import EventDict, Processor

from riskcast.config import get_settings

if TYPE_CHECKING:
    from riskcast.models.jobs import Job


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def configure_logging(stream: Any = None) -> None:
    """
    Configure structured logging for the application.
    Uses JSON format in production, console format in development.

    Args:
        stream: Log destination (default stdout)
    """
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_severity,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def job_log_context(job: "Job") -> dict[str, Any]:
    """Context fields stamped on every log line emitted while a job runs."""
    return {
        "job_id": job.id,
        "job_type": job.job_type.value,
        "user_id": job.user_id,
        "target_date": str(job.target_date),
        "attempt": job.attempts,
    }


@contextmanager
def job_context(job: "Job") -> Iterator[None]:
    """
    Bind a leased job's identity to the logging context.

    Context is held in contextvars, so concurrent jobs on worker threads
    each keep their own fields. Everything is unbound on exit.

    Example:
        >>> with job_context(leased):
        ...     logger.info("job_started")  # carries job_id, user_id, ...
    """
    with structlog.contextvars.bound_contextvars(**job_log_context(job)):
        yield

