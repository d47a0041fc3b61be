"""
Batched remote log sink.

Records are buffered in memory and shipped to an HTTP collector in batches by
a background flusher thread.
"""

import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import httpx

from faultline.models.log_record import LogLevel, LogRecord
from faultline.sinks.base import LogSink
from faultline.utils.logging import get_logger, log_internal_failure

logger = get_logger(__name__)


class BatchedRemoteSink(LogSink):
    """
    Buffers records and POSTs them to a collector endpoint in batches.

    A batch is sent when `batch_size` records are buffered, when
    `interval_seconds` elapse, or immediately after a critical record. A batch
    that fails to deliver is put back at the front of the buffer and the sink
    is degraded: it is retried on the next interval, and only critical records
    wake the flusher early, until a flush succeeds. The buffer never holds
    more than `max_buffer` records; the oldest are dropped first.

    Args:
        endpoint: Collector URL
        batch_size: Records per POST
        interval_seconds: Maximum time a record waits before a flush attempt
        max_buffer: Buffer capacity in records
        timeout: HTTP timeout per request, in seconds
        source: Value of the "source" field in each payload
        headers: Extra request headers (e.g. authorization)
        client: Pre-configured httpx.Client; the sink creates and owns one otherwise
        autostart: Start the flusher thread on construction
        close_timeout: Upper bound for the final flush in close()
    """

    def __init__(
        self,
        endpoint: str,
        batch_size: int = 50,
        interval_seconds: float = 30.0,
        max_buffer: int = 1000,
        timeout: float = 10.0,
        source: str = "faultline",
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        autostart: bool = True,
        close_timeout: float = 5.0,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_buffer < batch_size:
            raise ValueError("max_buffer must be >= batch_size")

        self.endpoint = endpoint
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.max_buffer = max_buffer
        self.source = source
        self.close_timeout = close_timeout

        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

        self._buffer: Deque[LogRecord] = deque()
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.dropped_count = 0
        self.delivered_count = 0
        self.failed_batches = 0
        self.degraded = False
        self.closed = False

        if autostart:
            self.start()

    @property
    def pending(self) -> int:
        """Number of buffered records."""
        with self._lock:
            return len(self._buffer)

    def start(self) -> None:
        """Start the background flusher thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run, name="faultline-remote-sink", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._wake.wait(self.interval_seconds)
            self._wake.clear()
            if self._stopping.is_set():
                break
            self.flush()

    def write(self, record: LogRecord) -> None:
        if self.closed:
            raise RuntimeError("BatchedRemoteSink is closed")

        with self._lock:
            self._buffer.append(record)
            self._trim_locked()
            ready = len(self._buffer) >= self.batch_size and not self.degraded

        if ready or record.level == LogLevel.CRITICAL:
            self._wake.set()

    def _trim_locked(self) -> None:
        overflow = len(self._buffer) - self.max_buffer
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._buffer.popleft()
        self.dropped_count += overflow
        logger.warning(
            f"Remote sink buffer full, dropped {overflow} oldest records",
            extra={"endpoint": self.endpoint, "dropped_total": self.dropped_count},
        )

    def _take_batch(self) -> List[LogRecord]:
        with self._lock:
            count = min(self.batch_size, len(self._buffer))
            return [self._buffer.popleft() for _ in range(count)]

    def _requeue(self, batch: List[LogRecord]) -> None:
        with self._lock:
            self._buffer.extendleft(reversed(batch))
            self._trim_locked()

    def build_payload(self, batch: List[LogRecord]) -> Dict[str, Any]:
        """Request body for one batch."""
        return {
            "source": self.source,
            "batch_timestamp": datetime.now(timezone.utc).isoformat(),
            "records": [record.to_map() for record in batch],
        }

    def _deliver(self, batch: List[LogRecord]) -> None:
        response = self._client.post(self.endpoint, json=self.build_payload(batch))
        response.raise_for_status()

    def flush(self, deadline: Optional[float] = None) -> bool:
        """
        Send buffered records batch by batch until the buffer is empty.

        Stops at the first failed batch, which is put back at the front of
        the buffer.

        Args:
            deadline: time.monotonic() value after which no new batch is started

        Returns:
            True if the buffer was fully drained
        """
        wait = -1 if deadline is None else max(0.0, deadline - time.monotonic())
        if not self._send_lock.acquire(timeout=wait):
            return self.pending == 0

        try:
            while True:
                if deadline is not None and time.monotonic() >= deadline:
                    return self.pending == 0

                batch = self._take_batch()
                if not batch:
                    return True

                try:
                    self._deliver(batch)
                except Exception as e:
                    self._requeue(batch)
                    self.failed_batches += 1
                    self.degraded = True
                    log_internal_failure(
                        logger,
                        "Remote sink delivery failed",
                        e,
                        endpoint=self.endpoint,
                        batch_size=len(batch),
                        pending=self.pending,
                    )
                    return False

                self.delivered_count += len(batch)
                if self.degraded:
                    self.degraded = False
                    logger.info(
                        "Remote sink delivery recovered",
                        extra={"endpoint": self.endpoint},
                    )
        finally:
            self._send_lock.release()

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Stop the flusher and make one final, time-bounded flush.

        Args:
            timeout: Overrides `close_timeout` for this call
        """
        if self.closed:
            return
        budget = self.close_timeout if timeout is None else timeout
        deadline = time.monotonic() + budget

        self._stopping.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(max(0.0, deadline - time.monotonic()))

        drained = self.flush(deadline=deadline)
        self.closed = True
        if not drained:
            logger.warning(
                f"Remote sink closed with {self.pending} undelivered records",
                extra={"endpoint": self.endpoint, "pending": self.pending},
            )

        if self._owns_client:
            self._client.close()
