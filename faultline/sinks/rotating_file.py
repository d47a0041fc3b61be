"""
Size-rotated, newline-delimited JSON file sink.
"""

import os
import threading
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from faultline.models.log_record import LogRecord
from faultline.sinks.base import LogSink
from faultline.utils.logging import get_logger

logger = get_logger(__name__)


class RotatingFileSink(LogSink):
    """
    Appends one JSON line per record and rotates the file by size.

    Rotation happens before a line is appended when that line would push a
    non-empty file past `max_bytes`: ``log`` becomes ``log.1``, ``log.1``
    becomes ``log.2`` and so on. `max_files` counts every file on disk,
    active file included, so at most `max_files` files ever exist.

    Args:
        path: Active log file path
        max_bytes: Size limit of the active file
        max_files: Total number of files kept, including the active one
    """

    def __init__(
        self,
        path: Union[str, Path],
        max_bytes: int = 5 * 1024 * 1024,
        max_files: int = 5,
    ):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if max_files < 1:
            raise ValueError("max_files must be at least 1")

        self.path = Path(path)
        self.max_bytes = max_bytes
        self.max_files = max_files
        self.rotations = 0

        self._lock = threading.Lock()
        self._file: Optional[BinaryIO] = None
        self._size = 0

    def _open(self) -> BinaryIO:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "ab")
            self._size = self._file.tell()
        return self._file

    def _backup_path(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def files(self) -> List[Path]:
        """Existing log files, active file first."""
        candidates = [self.path] + [self._backup_path(i) for i in range(1, self.max_files + 1)]
        return [candidate for candidate in candidates if candidate.exists()]

    def rotate(self) -> None:
        """Shift backups up by one and start a new active file."""
        if self._file is not None:
            self._file.close()
            self._file = None

        oldest = self._backup_path(self.max_files - 1) if self.max_files > 1 else self.path
        if oldest.exists():
            oldest.unlink()

        for index in range(self.max_files - 2, 0, -1):
            source = self._backup_path(index)
            if source.exists():
                os.replace(source, self._backup_path(index + 1))

        if self.max_files > 1 and self.path.exists():
            os.replace(self.path, self._backup_path(1))

        self._size = 0
        self.rotations += 1
        logger.debug(
            f"Rotated log file {self.path}",
            extra={"path": str(self.path), "rotations": self.rotations},
        )

    def write(self, record: LogRecord) -> None:
        line = (record.to_json() + "\n").encode("utf-8")
        with self._lock:
            self._open()
            if self._size > 0 and self._size + len(line) > self.max_bytes:
                self.rotate()
            handle = self._open()
            handle.write(line)
            self._size += len(line)

    def flush(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.flush()
                self._file.close()
                self._file = None
