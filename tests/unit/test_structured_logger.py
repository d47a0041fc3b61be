"""
Unit tests for the structured logger.
"""

import logging
import threading

import pytest

from faultline.models import DataFailure, LogLevel, NetworkFailure, PlatformFailure
from faultline.services.structured_logger import StructuredLogger
from tests.helpers import CollectingSink, FailingSink


def test_emit_delivers_to_every_sink():
    """Test one emit reaches each sink exactly once."""
    first, second = CollectingSink(), CollectingSink()
    logger = StructuredLogger(sinks=[first, second])

    logger.info("user signed in", user_id="u1")
    assert logger.flush(timeout=5)

    assert len(first.records) == 1
    assert len(second.records) == 1
    assert first.records[0] is second.records[0]
    logger.close()


def test_identical_records_not_deduplicated(structured_logger, collecting_sink):
    """Test two identical emissions produce two records."""
    structured_logger.warning("disk almost full", free_mb=10)
    structured_logger.warning("disk almost full", free_mb=10)
    structured_logger.flush()

    assert len(collecting_sink.records) == 2
    assert collecting_sink.records[0].sequence != collecting_sink.records[1].sequence


def test_order_preserved(structured_logger, collecting_sink):
    """Test records arrive in emission order."""
    for index in range(50):
        structured_logger.debug(f"event {index}", index=index)
    structured_logger.flush()

    assert [record.context["index"] for record in collecting_sink.records] == list(range(50))


def test_sink_io_off_caller_thread(structured_logger, collecting_sink):
    """Test sinks are written from the dispatcher thread."""
    structured_logger.info("hello")
    structured_logger.flush()

    assert collecting_sink.thread_names == ["faultline-log-dispatcher"]
    assert threading.current_thread().name != "faultline-log-dispatcher"


def test_min_level_filters():
    """Test records below the minimum level are dropped."""
    sink = CollectingSink()
    logger = StructuredLogger(sinks=[sink], min_level="info")

    assert logger.debug("noise") is None
    assert logger.info("kept") is not None
    logger.flush()

    assert [record.message for record in sink.records] == ["kept"]
    logger.close()


def test_global_context_merged_call_site_wins(structured_logger, collecting_sink):
    """Test global context is merged and call-site keys override it."""
    structured_logger.add_global_context(app_version="1.0.0", environment="production")
    structured_logger.info("checkout", environment="canary", order_id=42)
    structured_logger.flush()

    context = collecting_sink.records[0].context
    assert context == {"app_version": "1.0.0", "environment": "canary", "order_id": 42}


def test_global_context_append_only(structured_logger):
    """Test re-binding a global key to a different value is rejected."""
    structured_logger.add_global_context(platform="linux")
    structured_logger.add_global_context(platform="linux")

    with pytest.raises(ValueError):
        structured_logger.add_global_context(platform="darwin")
    assert structured_logger.global_context["platform"] == "linux"


@pytest.mark.parametrize(
    "failure,level",
    [
        (DataFailure(message="corrupt", code="CORRUPTED"), LogLevel.CRITICAL),
        (NetworkFailure(message="5xx", status_code=503), LogLevel.ERROR),
        (NetworkFailure(message="slow", code="TIMEOUT"), LogLevel.WARNING),
        (NetworkFailure(message="404", status_code=404), LogLevel.INFO),
    ],
)
def test_log_failure_level(structured_logger, collecting_sink, failure, level):
    """Test failures are logged at the level mapped from severity."""
    record = structured_logger.log_failure(failure)
    structured_logger.flush()

    assert record.level == level
    assert collecting_sink.records[0].failure["failure_id"] == failure.failure_id


def test_failing_sink_isolated(caplog):
    """Test a raising sink neither reaches the caller nor blocks other sinks."""
    failing, healthy = FailingSink(), CollectingSink()
    logger = StructuredLogger(sinks=[failing, healthy])

    with caplog.at_level(logging.WARNING, logger="faultline"):
        logger.error("payment failed")
        logger.error("payment failed again")
        logger.flush()

    assert failing.attempts == 2
    assert len(healthy.records) == 2
    assert logger.sink_errors == 2
    assert any("FailingSink failed to write record" in message for message in caplog.messages)
    logger.close()


def test_add_sink_receives_later_records(structured_logger, collecting_sink):
    """Test a sink added later receives records emitted after it."""
    structured_logger.info("before")
    structured_logger.flush()
    late = CollectingSink()
    structured_logger.add_sink(late)
    structured_logger.info("after")
    structured_logger.flush()

    assert [record.message for record in late.records] == ["after"]
    assert len(collecting_sink.records) == 2


def test_close_delivers_pending_and_closes_sinks():
    """Test close drains the queue and closes every sink."""
    sink = CollectingSink()
    logger = StructuredLogger(sinks=[sink])
    for index in range(20):
        logger.info(f"event {index}")

    logger.close()

    assert len(sink.records) == 20
    assert sink.closed
    assert logger.closed
    assert logger.info("late") is None


def test_flush_without_dispatcher_thread():
    """Test flush delivers inline when the dispatcher was never started."""
    sink = CollectingSink()
    logger = StructuredLogger(sinks=[sink], autostart=False)
    logger.info("queued")

    assert logger.flush(timeout=1)
    assert len(sink.records) == 1
    assert sink.flushed == 1


def test_log_failure_includes_global_context(structured_logger, collecting_sink):
    """Test failure records carry global context too."""
    structured_logger.add_global_context(installation_id="install-1")
    structured_logger.log_failure(PlatformFailure(message="boom", code="UNHANDLED", context={"screen": "cart"}))
    structured_logger.flush()

    assert collecting_sink.records[0].context == {"installation_id": "install-1", "screen": "cart"}
