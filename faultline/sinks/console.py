"""
Console log sink.
"""

import sys
from typing import IO, Optional

from faultline.models.log_record import LogRecord
from faultline.sinks.base import LogSink


class ConsoleSink(LogSink):
    """
    Writes one line per record to a text stream, synchronously.

    Args:
        stream: Output stream (stderr by default)
        fmt: "text" for a human readable line or "json" for the record's JSON form
    """

    def __init__(self, stream: Optional[IO[str]] = None, fmt: str = "text"):
        if fmt not in ("text", "json"):
            raise ValueError(f"Unsupported console format: {fmt!r}")
        self._stream = stream
        self.fmt = fmt

    @property
    def stream(self) -> IO[str]:
        # Resolved lazily so pytest's capsys replacement of stderr is honoured
        return self._stream or sys.stderr

    def format(self, record: LogRecord) -> str:
        """Render a record as a single line."""
        if self.fmt == "json":
            return record.to_json()

        line = (
            f"{record.timestamp.isoformat()} "
            f"[{record.level.value.upper()}] {record.source}: {record.message}"
        )
        if record.failure:
            line += f" ({record.failure.get('type')}/{record.failure.get('code') or '-'})"
        if record.context:
            pairs = " ".join(f"{key}={value}" for key, value in record.context.items())
            line += f" | {pairs}"
        return line

    def write(self, record: LogRecord) -> None:
        self.stream.write(self.format(record) + "\n")

    def flush(self) -> None:
        self.stream.flush()

    def close(self) -> None:
        # The stream belongs to the caller
        self.flush()
