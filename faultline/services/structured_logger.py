"""
Structured logger service.

Builds LogRecords on the caller's thread and hands them to a single
dispatcher thread that fans them out to every registered sink.
"""

import queue
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from faultline.models.failure import Failure
from faultline.models.log_record import LogLevel, LogRecord
from faultline.sinks.base import LogSink
from faultline.utils.logging import get_logger, log_internal_failure

logger = get_logger(__name__)

_STOP = object()


class _Barrier:
    """Queue marker: set once every record queued before it has been dispatched."""

    def __init__(self) -> None:
        self.done = threading.Event()


class StructuredLogger:
    """
    Fan-out logger delivering LogRecords to multiple sinks.

    `emit` never performs sink I/O on the calling thread. Records are
    delivered in emission order, each to every sink exactly once. A sink that
    raises is reported on the diagnostic channel and the remaining sinks
    still receive the record.

    Args:
        sinks: Initial sinks
        min_level: Records below this level are discarded
        global_context: Context merged into every record (call-site keys win)
        source: Source tag written on every record
        autostart: Start the dispatcher thread on construction
    """

    def __init__(
        self,
        sinks: Optional[Iterable[LogSink]] = None,
        min_level: Union[LogLevel, str, int] = LogLevel.DEBUG,
        global_context: Optional[Mapping[str, Any]] = None,
        source: str = "faultline",
        autostart: bool = True,
    ):
        self.min_level = LogLevel.parse(min_level)
        self.source = source
        self.sink_errors = 0

        self._sinks: List[LogSink] = list(sinks or [])
        self._global_context: Dict[str, Any] = dict(global_context or {})
        self._lock = threading.Lock()
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        if autostart:
            self.start()

    @property
    def sinks(self) -> List[LogSink]:
        with self._lock:
            return list(self._sinks)

    @property
    def global_context(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._global_context)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self.running or self._closed:
            return
        self._thread = threading.Thread(
            target=self._run, name="faultline-log-dispatcher", daemon=True
        )
        self._thread.start()

    def add_sink(self, sink: LogSink) -> None:
        """Register another sink; it receives records emitted from now on."""
        with self._lock:
            self._sinks.append(sink)

    def add_global_context(self, **values: Any) -> None:
        """
        Add process-wide context fields.

        Raises:
            ValueError: If a key is already bound to a different value
        """
        with self._lock:
            for key, value in values.items():
                if key in self._global_context and self._global_context[key] != value:
                    raise ValueError(
                        f"Global context key {key!r} is already set to "
                        f"{self._global_context[key]!r}"
                    )
            self._global_context.update(values)

    def is_enabled_for(self, level: Union[LogLevel, str, int]) -> bool:
        return LogLevel.parse(level).numeric >= self.min_level.numeric

    def emit(
        self,
        level: Union[LogLevel, str, int],
        message: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[LogRecord]:
        """
        Build a record and enqueue it for delivery.

        Args:
            level: Record level
            message: Log message
            context: Call-site context, overriding global keys of the same name

        Returns:
            The enqueued record, or None if it was filtered out
        """
        level = LogLevel.parse(level)
        if not self.is_enabled_for(level):
            return None

        merged = self.global_context
        merged.update(context or {})
        record = LogRecord(level=level, message=message, context=merged, source=self.source)
        return self._enqueue(record)

    def log_failure(self, failure: Failure) -> Optional[LogRecord]:
        """
        Enqueue a record projected from a Failure.

        The level follows the failure severity (critical→critical,
        high→error, medium→warning, low/info→info).
        """
        record = LogRecord.from_failure(failure, self.global_context, source=self.source)
        if not self.is_enabled_for(record.level):
            return None
        return self._enqueue(record)

    def debug(self, message: str, **context: Any) -> Optional[LogRecord]:
        return self.emit(LogLevel.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> Optional[LogRecord]:
        return self.emit(LogLevel.INFO, message, context)

    def warning(self, message: str, **context: Any) -> Optional[LogRecord]:
        return self.emit(LogLevel.WARNING, message, context)

    def error(self, message: str, **context: Any) -> Optional[LogRecord]:
        return self.emit(LogLevel.ERROR, message, context)

    def critical(self, message: str, **context: Any) -> Optional[LogRecord]:
        return self.emit(LogLevel.CRITICAL, message, context)

    def _enqueue(self, record: LogRecord) -> Optional[LogRecord]:
        if self._closed:
            logger.log(
                record.level.numeric,
                f"Record emitted after logger close: {record.message}",
                extra={"record_context": dict(record.context)},
            )
            return None
        self._queue.put(record)
        return record

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._process(item)

    def _process(self, item: Any) -> None:
        if isinstance(item, _Barrier):
            self._flush_sinks()
            item.done.set()
        else:
            self._dispatch(item)

    def _drain_inline(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                self._process(item)

    def _dispatch(self, record: LogRecord) -> None:
        for sink in self.sinks:
            try:
                sink.write(record)
            except Exception as e:
                self.sink_errors += 1
                log_internal_failure(
                    logger,
                    f"Sink {sink.name} failed to write record",
                    e,
                    sink=sink.name,
                    record_sequence=record.sequence,
                )

    def _flush_sinks(self) -> None:
        for sink in self.sinks:
            try:
                sink.flush()
            except Exception as e:
                self.sink_errors += 1
                log_internal_failure(logger, f"Sink {sink.name} failed to flush", e, sink=sink.name)

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """
        Wait until every record emitted so far has reached the sinks, then flush them.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if the dispatcher caught up within the timeout
        """
        if self._closed:
            return True

        barrier = _Barrier()
        self._queue.put(barrier)
        if not self.running:
            self._drain_inline()
        return barrier.done.wait(timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """
        Deliver pending records, stop the dispatcher and close every sink.

        Args:
            timeout: Maximum seconds to wait for pending records
        """
        if self._closed:
            return

        if self.running:
            self._queue.put(_STOP)
            self._thread.join(timeout)
        else:
            self._drain_inline()
        self._closed = True

        for sink in self.sinks:
            try:
                sink.close()
            except Exception as e:
                self.sink_errors += 1
                log_internal_failure(logger, f"Sink {sink.name} failed to close", e, sink=sink.name)
