"""Failure taxonomy data models."""

import itertools
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .context import FrozenContext, freeze_context


_sequence = itertools.count(1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """Ordered failure severity (critical > high > medium > low > info)."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        """Return True if this severity is equal to or above `other`."""
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class FailureKind(str, Enum):
    """Closed set of failure categories."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    DATA = "data"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    PLATFORM = "platform"
    ANALYTICS_ALERT = "analytics_alert"


class Failure(BaseModel):
    """
    Canonical, immutable representation of an error flowing through the pipeline.

    Severity is looked up from the subtype's code table unless passed
    explicitly. Subtypes only add fields and tables; they never override
    the constructor.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    SEVERITY_BY_CODE: ClassVar[Dict[str, Severity]] = {}
    DEFAULT_SEVERITY: ClassVar[Severity] = Severity.MEDIUM
    USER_MESSAGES: ClassVar[Dict[str, str]] = {}
    DEFAULT_USER_MESSAGE: ClassVar[str] = "Something went wrong. Please try again."

    kind: FailureKind = FailureKind.PLATFORM
    message: str
    code: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    origin_cause: Optional[BaseException] = Field(default=None, exclude=True, repr=False)
    trace: Optional[str] = Field(default=None, repr=False)
    context: Dict[str, Any] = Field(default_factory=FrozenContext)
    timestamp: datetime = Field(default_factory=_utc_now)
    sequence: int = Field(default_factory=lambda: next(_sequence))
    failure_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    @model_validator(mode="before")
    @classmethod
    def derive_code_and_severity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = cls.infer_code(dict(data))
        if data.get("severity") is None:
            data["severity"] = cls.severity_for(data.get("code"))
        return data

    @field_validator("context", mode="after")
    @classmethod
    def freeze_context_values(cls, value: Dict[str, Any]) -> FrozenContext:
        return freeze_context(value)

    @field_validator("timestamp", mode="after")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def infer_code(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Hook for subtypes that derive `code` from other fields."""
        return data

    @classmethod
    def severity_for(cls, code: Optional[str]) -> Severity:
        """Severity for a code of this subtype."""
        if code is None:
            return cls.DEFAULT_SEVERITY
        return cls.SEVERITY_BY_CODE.get(code, cls.DEFAULT_SEVERITY)

    @property
    def user_message(self) -> str:
        """Message safe to show to end users."""
        if self.code is None:
            return self.DEFAULT_USER_MESSAGE
        return self.USER_MESSAGES.get(self.code, self.DEFAULT_USER_MESSAGE)

    def to_map(self) -> Dict[str, Any]:
        """Serializable projection used by the logger and the crash reporter."""
        data = self.model_dump(mode="json")
        data["type"] = type(self).__name__
        data["user_message"] = self.user_message
        if self.origin_cause is not None:
            data["origin_cause"] = {
                "type": type(self.origin_cause).__name__,
                "message": str(self.origin_cause),
            }
        else:
            data["origin_cause"] = None
        return data

    def with_context(self, **extra: Any) -> "Failure":
        """Return a copy whose context also contains `extra`."""
        merged = dict(self.context)
        merged.update(extra)
        return self.model_copy(update={"context": freeze_context(merged)})

    def as_error(self) -> "FailureError":
        """Wrap this failure in a raisable exception."""
        return FailureError(self)


class FailureError(Exception):
    """Raisable carrier for a Failure value."""

    def __init__(self, failure: Failure):
        super().__init__(failure.message)
        self.failure = failure


class NetworkFailure(Failure):
    """Failure talking to a remote service."""

    TIMEOUT: ClassVar[str] = "TIMEOUT"
    NO_CONNECTION: ClassVar[str] = "NO_CONNECTION"
    SERVER_ERROR: ClassVar[str] = "SERVER_ERROR"
    RATE_LIMITED: ClassVar[str] = "RATE_LIMITED"
    CLIENT_ERROR: ClassVar[str] = "CLIENT_ERROR"

    SEVERITY_BY_CODE: ClassVar[Dict[str, Severity]] = {
        "TIMEOUT": Severity.MEDIUM,
        "NO_CONNECTION": Severity.MEDIUM,
        "SERVER_ERROR": Severity.HIGH,
        "RATE_LIMITED": Severity.MEDIUM,
        "CLIENT_ERROR": Severity.LOW,
    }
    USER_MESSAGES: ClassVar[Dict[str, str]] = {
        "TIMEOUT": "The request took too long. Please try again.",
        "NO_CONNECTION": "No internet connection. Check your network and try again.",
        "SERVER_ERROR": "Our servers are having trouble. Please try again later.",
        "RATE_LIMITED": "Too many requests. Please wait a moment and try again.",
        "CLIENT_ERROR": "The request could not be completed.",
    }
    DEFAULT_USER_MESSAGE: ClassVar[str] = "A network problem occurred. Please try again."
    TRANSIENT_CODES: ClassVar[frozenset] = frozenset(
        {"TIMEOUT", "NO_CONNECTION", "SERVER_ERROR", "RATE_LIMITED"}
    )

    kind: FailureKind = FailureKind.NETWORK
    status_code: Optional[int] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None

    @classmethod
    def infer_code(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("code") is None and data.get("status_code") is not None:
            data["code"] = code_for_status(int(data["status_code"]))
        return data

    @property
    def is_transient(self) -> bool:
        """True for timeouts, connection errors, 5xx, 408 and 429."""
        if self.status_code is not None:
            return self.status_code >= 500 or self.status_code in (408, 429)
        return self.code in self.TRANSIENT_CODES


def code_for_status(status_code: int) -> str:
    """Map an HTTP status code to a NetworkFailure code."""
    if status_code == 408:
        return NetworkFailure.TIMEOUT
    if status_code == 429:
        return NetworkFailure.RATE_LIMITED
    if status_code >= 500:
        return NetworkFailure.SERVER_ERROR
    return NetworkFailure.CLIENT_ERROR


class AuthReason(str, Enum):
    """Why authentication failed."""

    TOKEN_EXPIRED = "token_expired"
    INVALID_CREDENTIALS = "invalid_credentials"
    BIOMETRIC_FAILED = "biometric_failed"
    PERMISSION_DENIED = "permission_denied"
    ACCOUNT_LOCKED = "account_locked"


class AuthenticationFailure(Failure):
    """Failure to authenticate or authorize the current subject."""

    SEVERITY_BY_CODE: ClassVar[Dict[str, Severity]] = {
        "TOKEN_EXPIRED": Severity.MEDIUM,
        "BIOMETRIC_FAILED": Severity.MEDIUM,
        "INVALID_CREDENTIALS": Severity.LOW,
        "PERMISSION_DENIED": Severity.HIGH,
        "ACCOUNT_LOCKED": Severity.HIGH,
    }
    USER_MESSAGES: ClassVar[Dict[str, str]] = {
        "TOKEN_EXPIRED": "Your session has expired. Please sign in again.",
        "BIOMETRIC_FAILED": "Biometric check failed. Try another sign-in method.",
        "INVALID_CREDENTIALS": "The credentials you entered are incorrect.",
        "PERMISSION_DENIED": "You don't have permission to do that.",
        "ACCOUNT_LOCKED": "Your account is locked. Contact support for help.",
    }
    DEFAULT_USER_MESSAGE: ClassVar[str] = "We couldn't verify your identity. Please sign in again."

    kind: FailureKind = FailureKind.AUTHENTICATION
    reason: AuthReason = AuthReason.INVALID_CREDENTIALS

    @classmethod
    def infer_code(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        code = data.get("code")
        if code is None:
            reason = AuthReason(data.get("reason", AuthReason.INVALID_CREDENTIALS))
            data["code"] = reason.value.upper()
            return data

        # Codes named after a reason imply that reason.
        try:
            implied = AuthReason(str(code).lower())
        except ValueError:
            return data
        if data.get("reason") is None:
            data["reason"] = implied
        elif AuthReason(data["reason"]) != implied:
            raise ValueError(f"code {code!r} contradicts reason {AuthReason(data['reason']).value!r}")
        return data


class DataFailure(Failure):
    """Failure reading, writing or trusting locally stored data."""

    CORRUPTED: ClassVar[str] = "CORRUPTED"
    STORAGE_FULL: ClassVar[str] = "STORAGE_FULL"

    SEVERITY_BY_CODE: ClassVar[Dict[str, Severity]] = {
        "CORRUPTED": Severity.CRITICAL,
        "STORAGE_FULL": Severity.HIGH,
        "IO_ERROR": Severity.MEDIUM,
        "MALFORMED": Severity.MEDIUM,
        "CONFLICT": Severity.MEDIUM,
        "NOT_FOUND": Severity.LOW,
    }
    USER_MESSAGES: ClassVar[Dict[str, str]] = {
        "CORRUPTED": "Some saved data was damaged and is being restored.",
        "STORAGE_FULL": "Your device is running out of storage space.",
        "CONFLICT": "This item was changed elsewhere. Please refresh and try again.",
        "NOT_FOUND": "The item you were looking for could not be found.",
    }
    DEFAULT_USER_MESSAGE: ClassVar[str] = "We couldn't load or save your data."

    kind: FailureKind = FailureKind.DATA
    table_name: Optional[str] = None
    field_name: Optional[str] = None


class FieldViolation(BaseModel):
    """A single rejected input field."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    message: str


class ValidationFailure(Failure):
    """Input rejected by validation rules."""

    DEFAULT_SEVERITY: ClassVar[Severity] = Severity.LOW
    USER_MESSAGES: ClassVar[Dict[str, str]] = {
        "INVALID_INPUT": "Some of the information you entered is not valid.",
        "MISSING_FIELD": "Please fill in all required fields.",
    }
    DEFAULT_USER_MESSAGE: ClassVar[str] = "Please check the information you entered."

    kind: FailureKind = FailureKind.VALIDATION
    violations: List[FieldViolation] = Field(default_factory=list)

    @classmethod
    def infer_code(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("code") is None:
            data["code"] = "INVALID_INPUT"
        return data


class BusinessRuleFailure(Failure):
    """A domain rule refused the requested operation."""

    DEFAULT_SEVERITY: ClassVar[Severity] = Severity.LOW
    DEFAULT_USER_MESSAGE: ClassVar[str] = "This action isn't allowed right now."

    kind: FailureKind = FailureKind.BUSINESS_RULE
    rule: Optional[str] = None


class PlatformFailure(Failure):
    """Runtime or interpreter level failure, and the fallback for unknown errors."""

    UNHANDLED: ClassVar[str] = "UNHANDLED"

    SEVERITY_BY_CODE: ClassVar[Dict[str, Severity]] = {
        "OUT_OF_MEMORY": Severity.CRITICAL,
        "RECURSION_LIMIT": Severity.CRITICAL,
        "STATE_CORRUPTION": Severity.CRITICAL,
        "PERMISSION_DENIED": Severity.HIGH,
        "UNHANDLED": Severity.MEDIUM,
        "NOT_SUPPORTED": Severity.LOW,
    }
    USER_MESSAGES: ClassVar[Dict[str, str]] = {
        "OUT_OF_MEMORY": "The app ran out of memory and needs to restart.",
        "PERMISSION_DENIED": "The app doesn't have permission to do that.",
        "NOT_SUPPORTED": "This feature isn't supported here.",
    }

    kind: FailureKind = FailureKind.PLATFORM
    exception_type: Optional[str] = None


class AnalyticsAlert(Failure):
    """Meta-failure raised by analytics when one failure type spikes."""

    SPIKE: ClassVar[str] = "SPIKE"

    DEFAULT_SEVERITY: ClassVar[Severity] = Severity.HIGH
    DEFAULT_USER_MESSAGE: ClassVar[str] = "We're looking into an issue affecting the app."

    kind: FailureKind = FailureKind.ANALYTICS_ALERT
    code: Optional[str] = "SPIKE"
    source_kind: Optional[FailureKind] = None
    source_code: Optional[str] = None
    occurrences: int = 0
    window_seconds: float = 0.0
