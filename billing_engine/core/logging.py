"""Structured logging with correlation IDs.

Every log line carries a correlation ID: the ``X-Correlation-ID`` header for
HTTP requests, the provider event ID for webhook jobs, the entity ID for audit
records, and a generated UUID otherwise.

Billing identifiers passed as extra fields (``event_id``, ``organization_id``,
``subscription_id``, ``job_name``) are lifted to the top level of the JSON
line so log queries can filter on them directly.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

AUDIT_LOGGER_NAME = "billing_engine.audit"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

BILLING_FIELDS = ("event_id", "organization_id", "subscription_id", "job_name")

# LogRecord attributes that are never treated as extra fields
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName", "correlation_id",
))


def get_correlation_id() -> str:
    """Get the current correlation ID, generating one if the context has none."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid.uuid4())
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter.

    Args:
        include_stack_trace: Attach the formatted traceback of ``exc_info``
        include_extra_fields: Emit non-billing extra fields under ``extra``
    """

    def __init__(
        self,
        include_stack_trace: bool = True,
        include_extra_fields: bool = True,
    ):
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if key in BILLING_FIELDS:
                log_data[key] = _json_safe(value)
            else:
                extra_fields[key] = _json_safe(value)

        if self.include_extra_fields and extra_fields:
            log_data["extra"] = extra_fields

        if record.exc_info and self.include_stack_trace:
            exc_type, exc_value, exc_tb = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stack_trace": traceback.format_exception(exc_type, exc_value, exc_tb) if exc_tb else None,
            }

        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamps the context correlation ID on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def _build_handler(level: int, json_format: bool, include_stack_trace: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(correlation_id)s] - %(message)s"
        ))
    return handler


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Configure the root logger for the API and the workers.

    Audit records always go out at INFO, whatever the application level, so
    raising ``LOG_LEVEL`` to WARNING never drops subscription changes.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit one JSON object per line
        include_stack_trace: Include tracebacks in error records
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(_build_handler(log_level, json_format, include_stack_trace))

    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.setLevel(logging.INFO)
    if log_level > logging.INFO:
        audit_logger.propagate = False
        audit_logger.addHandler(_build_handler(logging.INFO, json_format, include_stack_trace))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.app.trace").setLevel(logging.WARNING)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with the correlation ID and, if given, the exception traceback."""
    extra["correlation_id"] = get_correlation_id()
    logger.error(message, exc_info=exception, extra=extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.warning(message, extra=extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.info(message, extra=extra)
