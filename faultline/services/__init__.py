"""
Pipeline services: logging, recovery, interception, reporting and analytics.
"""

from faultline.services.analytics import ErrorAnalyticsEngine
from faultline.services.classifier import FailureClassifier
from faultline.services.crash_reporter import (
    BackendCrashReporter,
    CrashBackend,
    CrashReporter,
    HttpCrashBackend,
    NullCrashReporter,
    anonymize_subject,
)
from faultline.services.interceptor import GlobalErrorInterceptor
from faultline.services.notifications import LoggingNotifier, NotificationRateLimiter, UserNotifier
from faultline.services.recovery_engine import RecoveryEngine, RecoveryStrategy
from faultline.services.recovery_strategies import (
    AlwaysConnected,
    AuthenticationRecoveryStrategy,
    ConnectivityChecker,
    HttpConnectivityChecker,
    LocalStore,
    NetworkRecoveryStrategy,
    StorageRecoveryStrategy,
)
from faultline.services.state_store import NullStatePreserver, RedisStatePreserver, StatePreserver
from faultline.services.structured_logger import StructuredLogger

__all__ = [
    "StructuredLogger",
    "FailureClassifier",
    "RecoveryEngine",
    "RecoveryStrategy",
    "ConnectivityChecker",
    "AlwaysConnected",
    "HttpConnectivityChecker",
    "NetworkRecoveryStrategy",
    "AuthenticationRecoveryStrategy",
    "LocalStore",
    "StorageRecoveryStrategy",
    "NotificationRateLimiter",
    "UserNotifier",
    "LoggingNotifier",
    "StatePreserver",
    "NullStatePreserver",
    "RedisStatePreserver",
    "CrashReporter",
    "NullCrashReporter",
    "CrashBackend",
    "HttpCrashBackend",
    "BackendCrashReporter",
    "anonymize_subject",
    "ErrorAnalyticsEngine",
    "GlobalErrorInterceptor",
]
