"""
Metrics collection for the error pipeline.

This module tracks:
- Captured failures by kind and severity
- Recovery outcomes
- Crash reports, user notifications and suppressions
- State snapshots taken for critical failures
- Time spent handling each failure
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from faultline.utils.logging import get_logger

logger = get_logger(__name__)


class PipelineMetrics:
    """
    Thread-safe counters for one pipeline instance.

    The interceptor may run on many threads and event loops at once, so every
    update takes the internal lock.
    """

    def __init__(self, max_latency_samples: int = 1000):
        """
        Initialize metrics.

        Args:
            max_latency_samples: Number of most recent handling latencies kept
        """
        self._lock = threading.Lock()
        self._max_latency_samples = max_latency_samples
        self.started_at = datetime.now(timezone.utc)

        self.captured: int = 0
        self.by_kind: Dict[str, int] = {}
        self.by_severity: Dict[str, int] = {}

        self.recovered: int = 0
        self.recovery_failed: int = 0

        self.reported: int = 0
        self.notified: int = 0
        self.suppressed: int = 0
        self.state_snapshots: int = 0

        self.handling_latencies: List[float] = []
        self.last_failure_at: Optional[datetime] = None

    def record_captured(self, kind: str, severity: str) -> None:
        """
        Record a failure entering the interceptor.

        Args:
            kind: Failure kind value
            severity: Failure severity value
        """
        with self._lock:
            self.captured += 1
            self.by_kind[kind] = self.by_kind.get(kind, 0) + 1
            self.by_severity[severity] = self.by_severity.get(severity, 0) + 1
            self.last_failure_at = datetime.now(timezone.utc)

    def record_recovery(self, success: bool) -> None:
        with self._lock:
            if success:
                self.recovered += 1
            else:
                self.recovery_failed += 1

    def record_reported(self) -> None:
        with self._lock:
            self.reported += 1

    def record_notified(self) -> None:
        with self._lock:
            self.notified += 1

    def record_suppressed(self) -> None:
        with self._lock:
            self.suppressed += 1

    def record_state_snapshot(self) -> None:
        with self._lock:
            self.state_snapshots += 1

    def record_handling(self, duration_ms: float) -> None:
        """
        Record how long one pass through the interceptor took.

        Args:
            duration_ms: Handling duration in milliseconds
        """
        with self._lock:
            self.handling_latencies.append(duration_ms)
            overflow = len(self.handling_latencies) - self._max_latency_samples
            if overflow > 0:
                del self.handling_latencies[:overflow]

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        with self._lock:
            summary: Dict[str, Any] = {
                "started_at": self.started_at.isoformat(),
                "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
                "captured": self.captured,
                "by_kind": dict(self.by_kind),
                "by_severity": dict(self.by_severity),
                "recovered": self.recovered,
                "recovery_failed": self.recovery_failed,
                "reported": self.reported,
                "notified": self.notified,
                "suppressed": self.suppressed,
                "state_snapshots": self.state_snapshots,
            }
            latencies = list(self.handling_latencies)

        if latencies:
            summary["handling_latency"] = {
                "count": len(latencies),
                "min_ms": round(min(latencies), 2),
                "max_ms": round(max(latencies), 2),
                "avg_ms": round(sum(latencies) / len(latencies), 2),
            }

        return summary

    def log_summary(self) -> None:
        """Write the current summary to the diagnostic channel."""
        summary = self.get_metrics_summary()
        logger.info(
            f"Pipeline metrics: {summary['captured']} failures captured",
            extra={"metrics": summary},
        )

    def reset(self) -> None:
        """Clear all counters."""
        with self._lock:
            self.captured = 0
            self.by_kind.clear()
            self.by_severity.clear()
            self.recovered = 0
            self.recovery_failed = 0
            self.reported = 0
            self.notified = 0
            self.suppressed = 0
            self.state_snapshots = 0
            self.handling_latencies.clear()
            self.last_failure_at = None
            self.started_at = datetime.now(timezone.utc)
