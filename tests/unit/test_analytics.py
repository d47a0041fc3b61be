"""
Unit tests for the error analytics engine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from faultline.models import (
    AnalyticsAlert,
    DataFailure,
    FailureKind,
    LogLevel,
    NetworkFailure,
    Severity,
    ValidationFailure,
)
from faultline.services.analytics import ErrorAnalyticsEngine
from faultline.services.structured_logger import StructuredLogger
from tests.helpers import CollectingSink

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def timeout_at(offset_seconds: float, **context) -> NetworkFailure:
    return NetworkFailure(
        message="request timed out",
        code="TIMEOUT",
        timestamp=START + timedelta(seconds=offset_seconds),
        context=context,
    )


@pytest.fixture
def engine():
    return ErrorAnalyticsEngine(spike_threshold=50, spike_window_seconds=3600, clock=lambda: START)


def test_pattern_statistics(engine):
    """Test count, first/last seen and highest severity are tracked."""
    engine.record(timeout_at(0, user_id="u1"))
    engine.record(timeout_at(30, user_id="u2"))
    engine.record(
        NetworkFailure(
            message="worse",
            code="TIMEOUT",
            severity=Severity.HIGH,
            timestamp=START + timedelta(seconds=10),
            context={"user_id": "u1"},
        )
    )

    pattern = engine.get_pattern(FailureKind.NETWORK, "TIMEOUT")
    assert pattern.occurrence_count == 3
    assert pattern.first_seen == START
    assert pattern.last_seen == START + timedelta(seconds=30)
    assert pattern.highest_severity == Severity.HIGH
    assert pattern.affected_subjects == {"u1", "u2"}


def test_spike_alert_raised_exactly_once(engine):
    """Test 51 occurrences in one hour at threshold 50 raise exactly one alert."""
    alerts = [engine.record(timeout_at(index * 60)) for index in range(51)]
    raised = [alert for alert in alerts if alert is not None]

    assert len(raised) == 1
    assert alerts[-1] is raised[0]
    assert isinstance(raised[0], AnalyticsAlert)
    assert raised[0].occurrences == 51
    assert raised[0].source_code == "TIMEOUT"
    assert raised[0].severity == Severity.HIGH
    assert engine.alerts() == raised


def test_threshold_not_exceeded(engine):
    """Test exactly threshold occurrences do not alert."""
    alerts = [engine.record(timeout_at(index)) for index in range(50)]
    assert not any(alerts)


def test_occurrences_outside_window_ignored(engine):
    """Test occurrences spread beyond the window do not spike."""
    alerts = [engine.record(timeout_at(index * 120)) for index in range(60)]
    assert not any(alerts)


def test_alert_cooldown(engine):
    """Test a sustained spike alerts again only after a full window."""
    alerts = [engine.record(timeout_at(index * 10)) for index in range(500)]
    raised = [alert for alert in alerts if alert is not None]

    assert len(raised) == 2


def test_alert_failures_not_recorded(engine):
    """Test analytics alerts are not counted as patterns."""
    assert engine.record(AnalyticsAlert(message="spike")) is None
    assert engine.patterns() == []


def test_alert_published_to_logger_and_subscribers():
    """Test an alert reaches the structured logger and subscribers."""
    sink = CollectingSink()
    structured_logger = StructuredLogger(sinks=[sink], autostart=False)
    engine = ErrorAnalyticsEngine(structured_logger=structured_logger, spike_threshold=2)
    received = []
    engine.subscribe_alerts(received.append)
    engine.subscribe_alerts(lambda alert: 1 / 0)

    for index in range(3):
        engine.record(timeout_at(index))
    structured_logger.flush()

    assert len(received) == 1
    assert [record.level for record in sink.records] == [LogLevel.CRITICAL]
    assert sink.records[0].context["pattern"] == "network:TIMEOUT"


def test_report_contents():
    """Test reports list top failures, critical patterns and recommendations."""
    engine = ErrorAnalyticsEngine(top_n=2, recommendation_threshold=5, clock=lambda: START)
    for index in range(6):
        engine.record(timeout_at(index))
    for _ in range(3):
        engine.record(ValidationFailure(message="bad email"))
    engine.record(DataFailure(message="corrupt", code="CORRUPTED"))

    report = engine.generate_report()

    assert report.total_failures == 10
    assert report.distinct_types == 3
    assert [summary.key for summary in report.top_failures] == ["network:TIMEOUT", "validation:INVALID_INPUT"]
    assert [summary.key for summary in report.critical_patterns] == ["data:CORRUPTED"]
    assert any(line.startswith("Network failures reached 6") for line in report.recommendations)
    assert any("critical severity" in line for line in report.recommendations)
    assert engine.last_report is report


def test_report_resets_period(engine):
    """Test a new period starts after each report while patterns persist."""
    engine.record(timeout_at(0))
    engine.generate_report()

    second = engine.generate_report()

    assert second.total_failures == 0
    assert second.top_failures == []
    assert engine.get_pattern(FailureKind.NETWORK, "TIMEOUT").occurrence_count == 1


def test_report_subscribers(engine):
    """Test report subscribers receive each report."""
    reports = []
    engine.subscribe_reports(reports.append)
    engine.generate_report()
    assert len(reports) == 1


def test_expire_patterns(engine):
    """Test patterns unseen beyond retention are removed."""
    engine.record(timeout_at(0))
    engine.record(DataFailure(message="x", code="IO_ERROR", timestamp=START + timedelta(days=6)))

    removed = engine.expire_patterns(now=START + timedelta(days=8))

    assert removed == 1
    assert [pattern.key for pattern in engine.patterns()] == ["data:IO_ERROR"]


def test_patterns_are_copies(engine):
    """Test callers cannot mutate engine state through returned patterns."""
    engine.record(timeout_at(0))
    engine.patterns()[0].occurrence_count = 999
    assert engine.get_pattern(FailureKind.NETWORK, "TIMEOUT").occurrence_count == 1


def test_consumer_thread_processes_submissions():
    """Test submitted failures are recorded by the consumer thread."""
    engine = ErrorAnalyticsEngine(report_interval_seconds=0)
    engine.start()
    try:
        for index in range(10):
            engine.submit(timeout_at(index))
        assert engine.drain(timeout=5)
        assert engine.total_recorded == 10
    finally:
        engine.stop()
    assert not engine.running


def test_drain_without_thread(engine):
    """Test drain records inline when the consumer is not running."""
    engine.submit(timeout_at(0))
    assert engine.drain(timeout=1)
    assert engine.total_recorded == 1
