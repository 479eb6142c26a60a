"""
Structured logging setup using structlog.

Call sites keep using ``logging.getLogger(__name__)`` with ``extra={...}``;
the stdlib records are rendered by structlog's ProcessorFormatter, so one
line carries the job id, worker id and trace id of the job it belongs to.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from extraction_queue.config import get_settings

# Agent stderr tails and payload echoes can be large; keep log lines bounded
MAX_FIELD_LENGTH = 2000

# Libraries whose INFO output is noise next to the job lifecycle lines
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add OpenTelemetry trace context to log records.

    Args:
        logger: The logger instance.
        method_name: The method name being called.
        event_dict: The event dictionary.

    Returns:
        The event dictionary with trace context added.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def drop_empty_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Remove ``None`` extras, e.g. an absent idempotency key or group key."""
    return {key: value for key, value in event_dict.items() if value is not None}


def truncate_long_fields(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
            event_dict[key] = f"{value[:MAX_FIELD_LENGTH]}... [{len(value) - MAX_FIELD_LENGTH} more chars]"
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        drop_empty_fields,
        truncate_long_fields,
    ]


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(component: str | None = None) -> None:
    """
    Configure structured logging for the API or worker process.

    Sets up structlog with JSON or console output based on configuration,
    and routes standard library records through the same processors.

    Args:
        component: Optional process name ("api", "worker") added to every line.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings.log_format),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if component:
        bind_context(component=component)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent log messages.

    The worker binds ``job_id`` and ``worker_id`` while a job runs.

    Args:
        **kwargs: Key-value pairs to add to log context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    """Unbind the given context variables, or all of them when none are named."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
