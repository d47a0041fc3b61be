"""
Diagnostic logging for the pipeline itself.

Application records travel through StructuredLogger and its sinks. Failures
of the pipeline's own machinery (a sink that cannot write, a recovery strategy
that raises, an unreachable crash backend) are written here instead, through
the standard logging module, so they are never lost in the component that
just failed.

This module provides:
- JSON formatted diagnostic output
- Context injection via LoggerAdapter
- A single helper for logging internal pipeline failures
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, IO, MutableMapping, Optional
from logging import LogRecord

ROOT_LOGGER_NAME = "faultline"

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for diagnostic records.

    Outputs log records as JSON with standard fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - context: Extra fields passed by the caller or the adapter
    - error: Exception details, when exc_info is set
    """

    def format(self, record: LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON formatted log string
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info)),
            }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects fixed context fields into every record."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """
        Create a new logger adapter with additional context.

        Args:
            **context: Additional context fields

        Returns:
            New logger adapter with merged context
        """
        new_extra = dict(self.extra)
        new_extra.update(context)
        return ContextLoggerAdapter(self.logger, new_extra)


def setup_logging(log_level: str = "WARNING", stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Configure the diagnostic channel.

    Installs one unbuffered console handler with the JSON formatter on the
    ``faultline`` logger. Calling it again replaces the handler.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream, stderr by default

    Returns:
        The configured ``faultline`` logger
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler.setLevel(log_level.upper())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(log_level.upper())
    root.handlers.clear()
    root.addHandler(handler)
    root.propagate = False

    # Transport libraries are noisy at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return root


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware diagnostic logger for a module.

    Args:
        name: Logger name (typically __name__)
        **context: Fields added to every record

    Returns:
        Context logger adapter

    Example:
        logger = get_logger(__name__, component="remote_sink")
        logger.warning("Delivery failed")
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)


def log_internal_failure(
    logger: logging.LoggerAdapter,
    message: str,
    error: BaseException,
    **context: Any
) -> None:
    """
    Log a failure of the pipeline's own machinery at warning level.

    Args:
        logger: Logger to use
        message: What the pipeline was doing
        error: Exception that was caught
        **context: Additional context fields
    """
    extra = dict(context)
    extra["error_type"] = type(error).__name__
    extra["error_message"] = str(error)
    logger.warning(
        f"{message}: {error}",
        extra=extra,
        exc_info=(type(error), error, error.__traceback__),
    )
