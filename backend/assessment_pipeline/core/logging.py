"""Structured logging for pipeline services.

Every log line carries the correlation ID of the workflow action and, inside
``case_log_context``, the case it is working on (case_id, display_number,
request_id, actor). Third-party loggers go through the same renderer via the
stdlib bridge.
"""

import logging
import logging.config
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

import structlog
from asgi_correlation_id.context import correlation_id

# Loggers that are noisy at INFO while a case moves through the pipeline
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncpg")


def add_correlation_id(logger, method, event_dict):
    """Inject correlation_id from asgi-correlation-id context into every log entry."""
    cid = correlation_id.get(None)
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _log_value(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


@contextmanager
def case_log_context(**fields) -> Iterator[None]:
    """Bind case fields to every log line emitted inside the block.

    UUIDs and stages are rendered as plain strings; None values are skipped.
    Nested blocks add to the outer one and restore it on exit.

    Example:
        with case_log_context(workflow_action="start_assessment", request_id=rid, actor=actor):
            with case_log_context(case_id=case.id, display_number=case.display_number):
                ...
    """
    bound = {key: _log_value(value) for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Route structlog and stdlib logging through one renderer on stdout.

    Call before the first log call; loggers cache their processor chain.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: One JSON object per line when True, ConsoleRenderer otherwise
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "pipeline": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "pipeline",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
