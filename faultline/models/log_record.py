"""Structured log record data models."""

import itertools
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .context import FrozenContext, freeze_context
from .failure import Failure, Severity


_sequence = itertools.count(1)


class LogLevel(str, Enum):
    """Log record level."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        """Equivalent stdlib logging level."""
        return _NUMERIC_LEVELS[self]

    @classmethod
    def parse(cls, value: Union["LogLevel", str, int]) -> "LogLevel":
        """
        Coerce a level name, stdlib numeric level or LogLevel into a LogLevel.

        Raises:
            ValueError: If the value names no known level
        """
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            matched = cls.DEBUG
            for level in cls:
                if level.numeric <= value:
                    matched = level
            return matched
        name = str(value).strip().lower()
        name = _LEVEL_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}") from None

    @classmethod
    def from_severity(cls, severity: Severity) -> "LogLevel":
        """Level used when a Failure of the given severity is logged."""
        return _SEVERITY_LEVELS[severity]


_NUMERIC_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}

_LEVEL_ALIASES = {"warn": "warning", "fatal": "critical", "err": "error"}

_SEVERITY_LEVELS = {
    Severity.CRITICAL: LogLevel.CRITICAL,
    Severity.HIGH: LogLevel.ERROR,
    Severity.MEDIUM: LogLevel.WARNING,
    Severity.LOW: LogLevel.INFO,
    Severity.INFO: LogLevel.INFO,
}


class LogRecord(BaseModel):
    """Immutable, serializable log entry delivered to sinks."""

    model_config = ConfigDict(frozen=True)

    level: LogLevel
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "faultline"
    context: Dict[str, Any] = Field(default_factory=FrozenContext)
    failure: Optional[Dict[str, Any]] = None
    sequence: int = Field(default_factory=lambda: next(_sequence))

    @field_validator("context", mode="after")
    @classmethod
    def freeze_context_values(cls, value: Dict[str, Any]) -> FrozenContext:
        return freeze_context(value)

    @classmethod
    def from_failure(
        cls,
        failure: Failure,
        global_context: Optional[Mapping[str, Any]] = None,
        source: str = "faultline",
    ) -> "LogRecord":
        """
        Project a Failure into a log record.

        Args:
            failure: Failure to project
            global_context: Process-wide context merged under the failure's own context
            source: Logger source tag

        Returns:
            LogRecord at the level mapped from the failure severity
        """
        context: Dict[str, Any] = dict(global_context or {})
        context.update(failure.context)
        return cls(
            level=LogLevel.from_severity(failure.severity),
            message=failure.message,
            timestamp=failure.timestamp,
            source=source,
            context=context,
            failure=failure.to_map(),
        )

    def to_map(self) -> Dict[str, Any]:
        """JSON-safe dict form of the record."""
        return self.model_dump(mode="json")

    @classmethod
    def from_map(cls, data: Mapping[str, Any]) -> "LogRecord":
        """Rebuild a record from `to_map()` output."""
        return cls.model_validate(dict(data))

    def to_json(self) -> str:
        """Single-line JSON form, as written by file and console sinks."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, line: str) -> "LogRecord":
        """Rebuild a record from one `to_json()` line."""
        return cls.model_validate_json(line)
