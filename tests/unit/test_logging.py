"""
Unit tests for diagnostic logging utilities.
"""

import json
import logging
from io import StringIO

from faultline.utils.logging import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    get_logger,
    log_internal_failure,
    setup_logging,
)


def test_json_formatter():
    """Test JSON formatter produces valid JSON output."""
    formatter = JSONFormatter()

    logger = logging.getLogger("test.json_formatter")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    logger.info("Test message", extra={"sink": "RemoteSink", "pending": 12})
    logger.removeHandler(handler)

    log_data = json.loads(stream.getvalue())

    assert "timestamp" in log_data
    assert log_data["level"] == "INFO"
    assert log_data["logger"] == "test.json_formatter"
    assert log_data["message"] == "Test message"
    assert log_data["context"] == {"sink": "RemoteSink", "pending": 12}
    assert "source" in log_data


def test_get_logger_with_context():
    """Test getting logger with context."""
    logger = get_logger("test_module", component="remote_sink", endpoint="https://logs")

    assert logger.extra["component"] == "remote_sink"
    assert logger.extra["endpoint"] == "https://logs"


def test_logger_with_context_adds_fields():
    """Test adding context to an existing logger."""
    logger = get_logger("test_module", component="analytics")
    enriched = logger.with_context(pattern="network:TIMEOUT")

    assert enriched.extra == {"component": "analytics", "pattern": "network:TIMEOUT"}
    assert logger.extra == {"component": "analytics"}


def test_setup_logging_writes_json():
    """Test setup_logging installs a JSON handler on the faultline logger."""
    stream = StringIO()
    setup_logging("INFO", stream=stream)

    get_logger(f"{ROOT_LOGGER_NAME}.tests").info("pipeline started", extra={"sinks": 2})

    log_data = json.loads(stream.getvalue())
    assert log_data["message"] == "pipeline started"
    assert log_data["context"]["sinks"] == 2


def test_setup_logging_replaces_handler():
    """Test calling setup_logging twice keeps a single handler."""
    setup_logging("INFO", stream=StringIO())
    root = setup_logging("DEBUG", stream=StringIO())

    assert len(root.handlers) == 1
    assert root.level == logging.DEBUG


def test_log_internal_failure_includes_error():
    """Test internal failures carry the error type and traceback."""
    stream = StringIO()
    setup_logging("WARNING", stream=stream)
    logger = get_logger(f"{ROOT_LOGGER_NAME}.tests")

    try:
        raise ConnectionError("collector unreachable")
    except ConnectionError as e:
        log_internal_failure(logger, "Remote sink delivery failed", e, endpoint="https://logs")

    log_data = json.loads(stream.getvalue())
    assert log_data["level"] == "WARNING"
    assert log_data["message"] == "Remote sink delivery failed: collector unreachable"
    assert log_data["context"]["error_type"] == "ConnectionError"
    assert log_data["context"]["endpoint"] == "https://logs"
    assert log_data["error"]["type"] == "ConnectionError"
    assert "Traceback" in log_data["error"]["stack_trace"]
