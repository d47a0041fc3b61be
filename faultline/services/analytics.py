"""
Error analytics engine.

Aggregates failures into per kind+code patterns on a single consumer thread,
raises an AnalyticsAlert when one pattern spikes, and produces periodic
reports with threshold-driven recommendations.
"""

import queue
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from faultline.models.analytics import AnalyticsReport, ErrorPattern, PatternSummary, pattern_key
from faultline.models.failure import AnalyticsAlert, Failure, FailureKind, Severity
from faultline.models.log_record import LogLevel
from faultline.services.structured_logger import StructuredLogger
from faultline.utils.logging import get_logger, log_internal_failure

logger = get_logger(__name__)

_STOP = object()

AlertCallback = Callable[[AnalyticsAlert], Any]
ReportCallback = Callable[[AnalyticsReport], Any]

SUBJECT_CONTEXT_KEY = "user_id"

# Recommendation text per kind, used when a kind crosses the threshold in a period
_KIND_RECOMMENDATIONS = {
    FailureKind.NETWORK: "check connectivity handling, timeouts and backend availability",
    FailureKind.AUTHENTICATION: "review session lifetime and credential refresh",
    FailureKind.DATA: "check local storage integrity and migrations",
    FailureKind.VALIDATION: "review input validation and form guidance",
    FailureKind.BUSINESS_RULE: "review the rules users are hitting most often",
    FailureKind.PLATFORM: "investigate unhandled exceptions and runtime limits",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Barrier:
    def __init__(self) -> None:
        self.done = threading.Event()


class ErrorAnalyticsEngine:
    """
    Running statistics over every failure the interceptor processes.

    Pattern state is only mutated by `record`, which the consumer thread calls
    for each submitted failure. Occurrence times are the failures' own
    timestamps, so spike detection follows when failures happened rather
    than when they were consumed.

    Args:
        structured_logger: Logger receiving spike and report records
        spike_threshold: Occurrences within the window above which a pattern spikes
        spike_window_seconds: Trailing window for spike detection
        report_interval_seconds: Period of the report timer (0 disables it)
        top_n: Patterns listed in a report's top failures
        recommendation_threshold: Per-kind count that triggers a recommendation
        retention_seconds: Patterns unseen for this long are expired
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        structured_logger: Optional[StructuredLogger] = None,
        spike_threshold: int = 50,
        spike_window_seconds: float = 3600.0,
        report_interval_seconds: float = 3600.0,
        top_n: int = 10,
        recommendation_threshold: int = 100,
        retention_seconds: float = 7 * 24 * 3600.0,
        clock: Callable[[], datetime] = _utc_now,
        max_alerts: int = 100,
    ):
        self.structured_logger = structured_logger
        self.spike_threshold = spike_threshold
        self.spike_window = timedelta(seconds=spike_window_seconds)
        self.report_interval_seconds = report_interval_seconds
        self.top_n = top_n
        self.recommendation_threshold = recommendation_threshold
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._window_capacity = max(spike_threshold * 2, 100)

        self._patterns: Dict[str, ErrorPattern] = {}
        self._lock = threading.Lock()
        self._alerts: Deque[AnalyticsAlert] = deque(maxlen=max_alerts)
        self._alert_callbacks: List[AlertCallback] = []
        self._report_callbacks: List[ReportCallback] = []
        self.last_report: Optional[AnalyticsReport] = None

        self._period_start = clock()
        self._period_total = 0
        self._period_counts: Dict[str, int] = {}
        self._period_alerts = 0
        self.total_recorded = 0

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._consumer: Optional[threading.Thread] = None
        self._timer: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    # ========== Lifecycle ==========

    @property
    def running(self) -> bool:
        return self._consumer is not None and self._consumer.is_alive()

    def start(self) -> None:
        """Start the consumer thread and, if enabled, the report timer."""
        if self.running:
            return
        self._stopping.clear()
        self._consumer = threading.Thread(
            target=self._consume, name="faultline-analytics", daemon=True
        )
        self._consumer.start()

        if self.report_interval_seconds > 0:
            self._timer = threading.Thread(
                target=self._report_loop, name="faultline-analytics-reports", daemon=True
            )
            self._timer.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Process queued failures, then stop both threads."""
        self._stopping.set()
        if self.running:
            self._queue.put(_STOP)
            self._consumer.join(timeout)
        else:
            self._drain_inline()
        if self._timer is not None:
            self._timer.join(timeout)
            self._timer = None

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._process(item)

    def _process(self, item: Any) -> None:
        if isinstance(item, _Barrier):
            item.done.set()
            return
        try:
            self.record(item)
        except Exception as e:
            log_internal_failure(logger, "Analytics failed to record failure", e)

    def _drain_inline(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                self._process(item)

    def _report_loop(self) -> None:
        while not self._stopping.wait(self.report_interval_seconds):
            try:
                self.generate_report()
                self.expire_patterns()
            except Exception as e:
                log_internal_failure(logger, "Periodic analytics report failed", e)

    # ========== Ingestion ==========

    def submit(self, failure: Failure) -> None:
        """Queue a failure for the consumer thread. Never blocks on analysis."""
        self._queue.put(failure)

    def drain(self, timeout: Optional[float] = 5.0) -> bool:
        """
        Wait until every failure submitted so far has been recorded.

        Returns:
            True if the queue was drained within the timeout
        """
        barrier = _Barrier()
        self._queue.put(barrier)
        if not self.running:
            self._drain_inline()
        return barrier.done.wait(timeout)

    def record(self, failure: Failure) -> Optional[AnalyticsAlert]:
        """
        Apply one failure to its pattern.

        Returns:
            The alert raised by this occurrence, if any
        """
        if failure.kind == FailureKind.ANALYTICS_ALERT:
            return None

        key = pattern_key(failure.kind, failure.code)
        occurred_at = failure.timestamp
        alert: Optional[AnalyticsAlert] = None

        with self._lock:
            pattern = self._patterns.get(key)
            if pattern is None:
                pattern = ErrorPattern(
                    kind=failure.kind,
                    code=failure.code,
                    first_seen=occurred_at,
                    last_seen=occurred_at,
                    highest_severity=failure.severity,
                )
                self._patterns[key] = pattern

            pattern.occurrence_count += 1
            pattern.last_seen = max(pattern.last_seen, occurred_at)
            pattern.first_seen = min(pattern.first_seen, occurred_at)
            if failure.severity.rank > pattern.highest_severity.rank:
                pattern.highest_severity = failure.severity

            subject = failure.context.get(SUBJECT_CONTEXT_KEY)
            if subject is not None:
                pattern.affected_subjects.add(str(subject))

            window = self._update_window(pattern, occurred_at)

            self.total_recorded += 1
            self._period_total += 1
            self._period_counts[key] = self._period_counts.get(key, 0) + 1

            if window > self.spike_threshold and (
                pattern.last_alert_at is None
                or occurred_at - pattern.last_alert_at >= self.spike_window
            ):
                pattern.last_alert_at = occurred_at
                self._period_alerts += 1
                alert = AnalyticsAlert(
                    message=(
                        f"Spike in {key}: {window} occurrences within "
                        f"{int(self.spike_window.total_seconds())}s"
                    ),
                    source_kind=failure.kind,
                    source_code=failure.code,
                    occurrences=window,
                    window_seconds=self.spike_window.total_seconds(),
                    context={"pattern": key, "affected_subjects": len(pattern.affected_subjects)},
                )
                self._alerts.append(alert)

        if alert is not None:
            self._publish_alert(alert)
        return alert

    def _update_window(self, pattern: ErrorPattern, occurred_at: datetime) -> int:
        recent = pattern.recent
        recent.append(occurred_at)
        if len(recent) > 1 and recent[-2] > occurred_at:
            recent.sort()
        cutoff = recent[-1] - self.spike_window
        stale = 0
        while stale < len(recent) and recent[stale] <= cutoff:
            stale += 1
        overflow = max(len(recent) - stale - self._window_capacity, 0)
        if stale or overflow:
            del recent[: stale + overflow]
        return len(recent)

    def _publish_alert(self, alert: AnalyticsAlert) -> None:
        if self.structured_logger is not None:
            self.structured_logger.emit(
                LogLevel.CRITICAL,
                alert.message,
                {
                    "failure_id": alert.failure_id,
                    "pattern": alert.context.get("pattern"),
                    "occurrences": alert.occurrences,
                    "window_seconds": alert.window_seconds,
                },
            )
        logger.warning(
            f"Analytics alert: {alert.message}",
            extra={"failure_id": alert.failure_id, "occurrences": alert.occurrences},
        )
        for callback in list(self._alert_callbacks):
            try:
                callback(alert)
            except Exception as e:
                log_internal_failure(logger, "Analytics alert listener raised", e)

    # ========== Queries ==========

    def subscribe_alerts(self, callback: AlertCallback) -> None:
        self._alert_callbacks.append(callback)

    def subscribe_reports(self, callback: ReportCallback) -> None:
        self._report_callbacks.append(callback)

    def patterns(self) -> List[ErrorPattern]:
        """Copies of all current patterns, most frequent first."""
        with self._lock:
            snapshot = [pattern.model_copy(deep=True) for pattern in self._patterns.values()]
        return sorted(snapshot, key=lambda pattern: pattern.occurrence_count, reverse=True)

    def get_pattern(self, kind: FailureKind, code: Optional[str] = None) -> Optional[ErrorPattern]:
        with self._lock:
            pattern = self._patterns.get(pattern_key(kind, code))
            return pattern.model_copy(deep=True) if pattern is not None else None

    def alerts(self) -> List[AnalyticsAlert]:
        """Recently raised alerts, oldest first."""
        with self._lock:
            return list(self._alerts)

    # ========== Reports ==========

    def _summary(self, pattern: ErrorPattern, count: int) -> PatternSummary:
        return PatternSummary(
            key=pattern.key,
            kind=pattern.kind,
            code=pattern.code,
            count=count,
            highest_severity=pattern.highest_severity,
            affected_subjects=len(pattern.affected_subjects),
            last_seen=pattern.last_seen,
        )

    def _recommendations(self, counts_by_kind: Dict[FailureKind, int], critical: int, alerts: int) -> List[str]:
        recommendations = []
        for kind, count in sorted(counts_by_kind.items(), key=lambda item: item[1], reverse=True):
            if count >= self.recommendation_threshold and kind in _KIND_RECOMMENDATIONS:
                recommendations.append(
                    f"{kind.value.replace('_', ' ').capitalize()} failures reached {count} "
                    f"in the period; {_KIND_RECOMMENDATIONS[kind]}."
                )
        if critical:
            recommendations.append(
                f"{critical} failure pattern(s) reached critical severity; investigate them first."
            )
        if alerts:
            recommendations.append(
                f"{alerts} spike alert(s) were raised; compare against recent releases for regressions."
            )
        return recommendations

    def generate_report(self, reset_period: bool = True) -> AnalyticsReport:
        """
        Summarize failures recorded since the previous report.

        Args:
            reset_period: Start a new period after this report

        Returns:
            AnalyticsReport for the period
        """
        now = self._clock()
        with self._lock:
            period_patterns = [
                (self._patterns[key], count)
                for key, count in self._period_counts.items()
                if key in self._patterns
            ]
            period_patterns.sort(key=lambda item: item[1], reverse=True)

            counts_by_kind: Dict[FailureKind, int] = {}
            for pattern, count in period_patterns:
                counts_by_kind[pattern.kind] = counts_by_kind.get(pattern.kind, 0) + count

            critical = [
                self._summary(pattern, count)
                for pattern, count in period_patterns
                if pattern.highest_severity == Severity.CRITICAL
            ]
            report = AnalyticsReport(
                generated_at=now,
                period_start=self._period_start,
                total_failures=self._period_total,
                distinct_types=len(period_patterns),
                top_failures=[self._summary(pattern, count) for pattern, count in period_patterns[: self.top_n]],
                critical_patterns=critical,
                recommendations=self._recommendations(counts_by_kind, len(critical), self._period_alerts),
                alerts_raised=self._period_alerts,
            )

            if reset_period:
                self._period_start = now
                self._period_total = 0
                self._period_counts = {}
                self._period_alerts = 0
            self.last_report = report

        if self.structured_logger is not None:
            self.structured_logger.emit(
                LogLevel.INFO,
                f"Analytics report: {report.total_failures} failures, {report.distinct_types} types",
                {
                    "total_failures": report.total_failures,
                    "distinct_types": report.distinct_types,
                    "critical_patterns": len(report.critical_patterns),
                    "alerts_raised": report.alerts_raised,
                },
            )
        for callback in list(self._report_callbacks):
            try:
                callback(report)
            except Exception as e:
                log_internal_failure(logger, "Analytics report listener raised", e)
        return report

    def expire_patterns(self, now: Optional[datetime] = None) -> int:
        """
        Drop patterns not seen within the retention window.

        Returns:
            Number of patterns removed
        """
        cutoff = (now or self._clock()) - self.retention
        with self._lock:
            expired = [key for key, pattern in self._patterns.items() if pattern.last_seen < cutoff]
            for key in expired:
                del self._patterns[key]
        if expired:
            logger.info(
                f"Expired {len(expired)} error patterns",
                extra={"expired": expired},
            )
        return len(expired)
