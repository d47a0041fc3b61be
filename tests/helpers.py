"""
Test doubles shared by the unit tests.
"""

import asyncio
import threading
from typing import Any, Dict, List, Optional

from faultline.models.failure import Failure
from faultline.models.interception import UserNotification
from faultline.models.log_record import LogRecord
from faultline.models.recovery import RecoveryResult
from faultline.services.crash_reporter import CrashReporter
from faultline.services.notifications import UserNotifier
from faultline.services.recovery_engine import RecoveryStrategy
from faultline.sinks.base import LogSink


class CollectingSink(LogSink):
    """Sink keeping every record it receives."""

    def __init__(self) -> None:
        self.records: List[LogRecord] = []
        self.thread_names: List[str] = []
        self.flushed = 0
        self.closed = False

    def write(self, record: LogRecord) -> None:
        self.records.append(record)
        self.thread_names.append(threading.current_thread().name)

    def flush(self) -> None:
        self.flushed += 1

    def close(self) -> None:
        self.closed = True


class FailingSink(LogSink):
    """Sink that raises on every write."""

    def __init__(self) -> None:
        self.attempts = 0

    def write(self, record: LogRecord) -> None:
        self.attempts += 1
        raise IOError("disk unavailable")


class RecordingCrashReporter(CrashReporter):
    """Crash reporter keeping reported failures."""

    def __init__(self) -> None:
        self.reported: List[Failure] = []

    async def report_failure(self, failure: Failure) -> bool:
        self.reported.append(failure)
        return True


class RecordingNotifier(UserNotifier):
    """Notifier keeping delivered notifications."""

    def __init__(self) -> None:
        self.notifications: List[UserNotification] = []

    async def notify(self, notification: UserNotification) -> None:
        self.notifications.append(notification)


class ScriptedStrategy(RecoveryStrategy):
    """Strategy returning a fixed result (or raising) and counting calls."""

    def __init__(
        self,
        result: Optional[RecoveryResult] = None,
        error: Optional[Exception] = None,
        label: str = "scripted",
        delay: float = 0.0,
    ):
        self.result = result or RecoveryResult.failed("scripted failure")
        self.error = error
        self.label = label
        self.delay = delay
        self.calls = 0

    @property
    def name(self) -> str:
        return self.label

    async def attempt(self, failure: Failure, operation: Any = None) -> RecoveryResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeSleep:
    """Awaitable sleep replacement recording requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def failure_records(sink: CollectingSink) -> List[Dict[str, Any]]:
    """Failure projections of the records a sink received."""
    return [record.failure for record in sink.records if record.failure is not None]
