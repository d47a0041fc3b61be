"""
Log sink interface.
"""

from abc import ABC, abstractmethod

from faultline.models.log_record import LogRecord


class LogSink(ABC):
    """
    Destination for structured log records.

    Sinks are driven by the StructuredLogger dispatcher thread: `write` is
    called once per record in emission order, never concurrently for the
    same sink. Implementations may raise; the logger isolates the failure.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def write(self, record: LogRecord) -> None:
        """Deliver or buffer one record."""

    def flush(self) -> None:
        """Push any buffered records to their destination."""

    def close(self) -> None:
        """Flush and release resources. Further writes are undefined."""
        self.flush()
