"""Data models for the Faultline error pipeline."""

from .analytics import AnalyticsReport, ErrorPattern, PatternSummary, pattern_key
from .context import FrozenContext, freeze_context, to_jsonable
from .failure import (
    AnalyticsAlert,
    AuthenticationFailure,
    AuthReason,
    BusinessRuleFailure,
    DataFailure,
    Failure,
    FailureError,
    FailureKind,
    FieldViolation,
    NetworkFailure,
    PlatformFailure,
    Severity,
    ValidationFailure,
    code_for_status,
)
from .interception import InterceptionOutcome, InterceptionStage, UserNotification
from .log_record import LogLevel, LogRecord
from .recovery import RecoveryResult

__all__ = [
    # Context helpers
    "FrozenContext",
    "freeze_context",
    "to_jsonable",
    # Failure taxonomy
    "Severity",
    "FailureKind",
    "Failure",
    "FailureError",
    "NetworkFailure",
    "AuthReason",
    "AuthenticationFailure",
    "DataFailure",
    "FieldViolation",
    "ValidationFailure",
    "BusinessRuleFailure",
    "PlatformFailure",
    "AnalyticsAlert",
    "code_for_status",
    # Log record models
    "LogLevel",
    "LogRecord",
    # Recovery models
    "RecoveryResult",
    # Analytics models
    "ErrorPattern",
    "PatternSummary",
    "AnalyticsReport",
    "pattern_key",
    # Interception models
    "InterceptionStage",
    "InterceptionOutcome",
    "UserNotification",
]
