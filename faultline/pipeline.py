"""
Error pipeline composition root.

ErrorPipeline wires the logger, sinks, recovery engine, crash reporter,
analytics engine and interceptor together and owns their lifecycle. It is
constructed explicitly at startup and passed to the code that needs it.
"""

import asyncio
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from faultline.config import Settings, get_settings
from faultline.models.failure import AuthenticationFailure, DataFailure, NetworkFailure
from faultline.models.interception import InterceptionOutcome
from faultline.models.log_record import LogLevel, LogRecord
from faultline.services.analytics import ErrorAnalyticsEngine
from faultline.services.classifier import FailureClassifier
from faultline.services.crash_reporter import (
    BackendCrashReporter,
    CrashBackend,
    CrashReporter,
    HttpCrashBackend,
    NullCrashReporter,
)
from faultline.services.interceptor import GlobalErrorInterceptor
from faultline.services.notifications import NotificationRateLimiter, UserNotifier
from faultline.services.recovery_engine import Operation, RecoveryEngine
from faultline.services.recovery_strategies import (
    AuthenticationRecoveryStrategy,
    ConnectivityChecker,
    LocalStore,
    NetworkRecoveryStrategy,
    StorageRecoveryStrategy,
)
from faultline.services.state_store import NullStatePreserver, RedisStatePreserver, StatePreserver
from faultline.services.structured_logger import StructuredLogger
from faultline.sinks.base import LogSink
from faultline.sinks.console import ConsoleSink
from faultline.sinks.remote import BatchedRemoteSink
from faultline.sinks.rotating_file import RotatingFileSink
from faultline.utils.logging import get_logger
from faultline.utils.metrics import PipelineMetrics
from faultline.utils.resilience import CircuitBreaker

logger = get_logger(__name__)


def build_sinks(settings: Settings, autostart: bool = True) -> List[LogSink]:
    """Create the sinks enabled in settings."""
    sinks: List[LogSink] = []
    if settings.console_sink_enabled:
        sinks.append(ConsoleSink(fmt=settings.console_format))
    if settings.file_sink_enabled:
        sinks.append(
            RotatingFileSink(
                settings.file_sink_path,
                max_bytes=settings.file_sink_max_bytes,
                max_files=settings.file_sink_retention_count,
            )
        )
    if settings.remote_sink_enabled:
        if not settings.remote_sink_url:
            logger.warning("Remote sink enabled but FAULTLINE_REMOTE_SINK_URL is not set")
        else:
            sinks.append(
                BatchedRemoteSink(
                    settings.remote_sink_url,
                    batch_size=settings.remote_sink_batch_size,
                    interval_seconds=settings.remote_sink_batch_interval_seconds,
                    max_buffer=settings.remote_sink_max_buffer,
                    timeout=settings.remote_sink_timeout_seconds,
                    source=settings.remote_sink_source,
                    close_timeout=settings.shutdown_flush_timeout_seconds,
                    autostart=autostart,
                )
            )
    return sinks


class ErrorPipeline:
    """
    One configured instance of the error and observability pipeline.

    Example:
        pipeline = ErrorPipeline.from_settings(state_provider=app_state.snapshot)
        pipeline.start()
        pipeline.install_hooks()
        ...
        pipeline.shutdown()
    """

    def __init__(
        self,
        structured_logger: StructuredLogger,
        interceptor: GlobalErrorInterceptor,
        analytics: ErrorAnalyticsEngine,
        shutdown_timeout: float = 5.0,
    ):
        self.structured_logger = structured_logger
        self.interceptor = interceptor
        self.analytics = analytics
        self.shutdown_timeout = shutdown_timeout
        self._started = False
        self._shut_down = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        sinks: Optional[Iterable[LogSink]] = None,
        crash_backend: Optional[CrashBackend] = None,
        state_provider: Optional[Callable[[], Any]] = None,
        state_preserver: Optional[StatePreserver] = None,
        local_store: Optional[LocalStore] = None,
        credential_refresher: Optional[Callable[[], Any]] = None,
        connectivity: Optional[ConnectivityChecker] = None,
        notifier: Optional[UserNotifier] = None,
        classifier: Optional[FailureClassifier] = None,
    ) -> "ErrorPipeline":
        """
        Build a pipeline from settings and optional collaborators.

        Args:
            settings: Settings (cached environment settings by default)
            sinks: Sinks to use instead of the ones enabled in settings
            crash_backend: Crash backend (an HTTP backend is built from
                crash_reporter_url when omitted)
            state_provider: Callable returning app state for Redis snapshots
            state_preserver: Preserver to use instead of the Redis one
            local_store: Store used by storage recovery
            credential_refresher: Callable refreshing expired credentials
            connectivity: Checker used by network recovery
            notifier: User notifier
            classifier: Classifier with application-specific registrations

        Returns:
            An ErrorPipeline that has not been started
        """
        settings = settings or get_settings()

        structured_logger = StructuredLogger(
            sinks=build_sinks(settings, autostart=False) if sinks is None else sinks,
            min_level=settings.effective_min_level,
            global_context=settings.global_context(),
            autostart=False,
        )

        recovery_engine = RecoveryEngine(strategy_timeout=settings.recovery_strategy_timeout_seconds)
        recovery_engine.register(
            NetworkFailure,
            NetworkRecoveryStrategy(
                connectivity=connectivity,
                max_retries=settings.recovery_max_retries,
                base_delay=settings.recovery_backoff_base_seconds,
                max_delay=settings.recovery_backoff_max_seconds,
            ),
        )
        recovery_engine.register(
            AuthenticationFailure,
            AuthenticationRecoveryStrategy(refresher=credential_refresher),
        )
        if local_store is not None:
            recovery_engine.register(DataFailure, StorageRecoveryStrategy(local_store))

        if crash_backend is None and settings.crash_reporter_url:
            crash_backend = HttpCrashBackend(
                settings.crash_reporter_url,
                api_key=settings.crash_reporter_api_key,
                timeout=settings.crash_reporter_timeout_seconds,
            )
        crash_reporter: CrashReporter = NullCrashReporter()
        if crash_backend is not None:
            crash_reporter = BackendCrashReporter(
                crash_backend,
                attributes=settings.crash_attributes(),
                salt=settings.crash_reporter_salt,
                circuit_breaker=CircuitBreaker(
                    failure_threshold=settings.circuit_breaker_failure_threshold,
                    timeout=settings.circuit_breaker_timeout_seconds,
                ),
            )

        if state_preserver is None:
            if state_provider is not None and settings.redis_url:
                state_preserver = RedisStatePreserver(
                    state_provider,
                    redis_url=settings.redis_url,
                    ttl_seconds=settings.state_snapshot_ttl_seconds,
                )
            else:
                state_preserver = NullStatePreserver()

        analytics = ErrorAnalyticsEngine(
            structured_logger=structured_logger,
            spike_threshold=settings.analytics_spike_threshold,
            spike_window_seconds=settings.analytics_spike_window_seconds,
            report_interval_seconds=settings.analytics_report_interval_seconds,
            top_n=settings.analytics_top_n,
            recommendation_threshold=settings.analytics_recommendation_threshold,
            retention_seconds=settings.analytics_retention_seconds,
        )

        interceptor = GlobalErrorInterceptor(
            structured_logger=structured_logger,
            recovery_engine=recovery_engine,
            crash_reporter=crash_reporter,
            analytics=analytics,
            classifier=classifier,
            rate_limiter=NotificationRateLimiter(
                max_notifications=settings.notification_limit,
                window_seconds=settings.notification_window_seconds,
            ),
            notifier=notifier,
            state_preserver=state_preserver,
            metrics=PipelineMetrics(),
            report_unrecovered=settings.report_unrecovered_failures,
        )

        return cls(
            structured_logger=structured_logger,
            interceptor=interceptor,
            analytics=analytics,
            shutdown_timeout=settings.shutdown_flush_timeout_seconds,
        )

    # ========== Accessors ==========

    @property
    def recovery_engine(self) -> RecoveryEngine:
        return self.interceptor.recovery_engine

    @property
    def crash_reporter(self) -> CrashReporter:
        return self.interceptor.crash_reporter

    @property
    def metrics(self) -> PipelineMetrics:
        return self.interceptor.metrics

    @property
    def capture(self) -> Callable[..., Any]:
        """The interceptor's capture decorator."""
        return self.interceptor.capture

    # ========== Lifecycle ==========

    def start(self) -> None:
        """Start the dispatcher, remote flushers and analytics threads."""
        if self._started:
            return
        self.structured_logger.start()
        for sink in self.structured_logger.sinks:
            if isinstance(sink, BatchedRemoteSink):
                sink.start()
        self.analytics.start()
        self._started = True
        logger.info("Error pipeline started")

    def install_hooks(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.interceptor.install(loop)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop analytics, deliver pending records, close every sink and log the
        final metrics summary.

        Args:
            timeout: Bound for waiting on pending work (shutdown_timeout by default)
        """
        if self._shut_down:
            return
        timeout = self.shutdown_timeout if timeout is None else timeout
        self.interceptor.uninstall()
        self.analytics.stop(timeout)
        self.structured_logger.close(timeout)
        self.metrics.log_summary()
        self._shut_down = True
        logger.info("Error pipeline shut down")

    def __enter__(self) -> "ErrorPipeline":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback) -> None:
        self.shutdown()

    async def __aenter__(self) -> "ErrorPipeline":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, exc_traceback) -> None:
        await self.interceptor.drain()
        await asyncio.to_thread(self.shutdown)

    # ========== Entry points ==========

    def emit(self, level: Union[LogLevel, str, int], message: str, **context: Any) -> Optional[LogRecord]:
        """Log an informational event through the structured logger."""
        return self.structured_logger.emit(level, message, context)

    async def handle(
        self,
        error: Any,
        context: Optional[Mapping[str, Any]] = None,
        operation: Optional[Operation] = None,
    ) -> InterceptionOutcome:
        return await self.interceptor.handle(error, context, operation)

    def handle_sync(
        self,
        error: Any,
        context: Optional[Mapping[str, Any]] = None,
        operation: Optional[Operation] = None,
    ) -> Optional[InterceptionOutcome]:
        return self.interceptor.handle_sync(error, context, operation)

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait until analytics and the logger have caught up."""
        analytics_done = self.analytics.drain(timeout)
        return self.structured_logger.flush(timeout) and analytics_done
