"""
Global error interceptor.

Every capture point (decorator, synchronous wrapper, background tasks,
interpreter and thread hooks, the asyncio loop handler and the FastAPI
exception handler) funnels into one reentrant coroutine, `handle`, which runs
a failure through:

    Captured → Normalized → Logged → RecoveryAttempted → Reported →
    (UserNotified | Suppressed)
"""

import asyncio
import functools
import sys
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from faultline.models.failure import Failure, PlatformFailure, Severity
from faultline.models.interception import InterceptionOutcome, InterceptionStage, UserNotification
from faultline.models.recovery import RecoveryResult
from faultline.services.analytics import ErrorAnalyticsEngine
from faultline.services.classifier import FailureClassifier
from faultline.services.crash_reporter import CrashReporter, NullCrashReporter
from faultline.services.notifications import LoggingNotifier, NotificationRateLimiter, UserNotifier
from faultline.services.recovery_engine import Operation, RecoveryEngine
from faultline.services.state_store import NullStatePreserver, StatePreserver
from faultline.services.structured_logger import StructuredLogger
from faultline.utils.logging import get_logger, log_internal_failure
from faultline.utils.metrics import PipelineMetrics

logger = get_logger(__name__)

CAPTURE_POINT_KEY = "capture_point"


class GlobalErrorInterceptor:
    """
    Normalizes, logs, recovers, reports and surfaces failures.

    `handle` never raises: a failing stage is written to the diagnostic
    channel and the remaining stages still run. It keeps no shared mutable
    state besides the internally locked rate limiter and metrics, so it may
    run concurrently from any number of threads and event loops.

    Args:
        structured_logger: Logger every failure is written to
        recovery_engine: Engine offered medium and higher failures
        crash_reporter: Receives high/critical failures
        analytics: Receives every failure, asynchronously
        classifier: Maps raw exceptions into Failures
        rate_limiter: Limits user notifications
        notifier: Surfaces notifications to the user
        state_preserver: Snapshots state before critical failures are surfaced
        metrics: Pipeline counters
        report_unrecovered: Also report failures whose recovery was attempted and failed
    """

    def __init__(
        self,
        structured_logger: StructuredLogger,
        recovery_engine: Optional[RecoveryEngine] = None,
        crash_reporter: Optional[CrashReporter] = None,
        analytics: Optional[ErrorAnalyticsEngine] = None,
        classifier: Optional[FailureClassifier] = None,
        rate_limiter: Optional[NotificationRateLimiter] = None,
        notifier: Optional[UserNotifier] = None,
        state_preserver: Optional[StatePreserver] = None,
        metrics: Optional[PipelineMetrics] = None,
        report_unrecovered: bool = False,
    ):
        self.structured_logger = structured_logger
        self.recovery_engine = recovery_engine or RecoveryEngine()
        self.crash_reporter = crash_reporter or NullCrashReporter()
        self.analytics = analytics
        self.classifier = classifier or FailureClassifier()
        self.rate_limiter = rate_limiter or NotificationRateLimiter()
        self.notifier = notifier or LoggingNotifier()
        self.state_preserver = state_preserver or NullStatePreserver()
        self.metrics = metrics or PipelineMetrics()
        self.report_unrecovered = report_unrecovered

        self._pending: Set["asyncio.Task[Any]"] = set()
        self._installed = False
        self._previous_sys_hook: Optional[Callable[..., Any]] = None
        self._previous_thread_hook: Optional[Callable[..., Any]] = None
        self._hooked_loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_loop_handler: Optional[Callable[..., Any]] = None

    # ========== Core state machine ==========

    def _normalize(self, error: Any, context: Optional[Mapping[str, Any]]) -> Failure:
        try:
            return self.classifier.classify(error, context)
        except Exception as e:
            log_internal_failure(logger, "Failure classification raised", e)
            return PlatformFailure(
                code=PlatformFailure.UNHANDLED,
                message=str(error),
                exception_type=type(error).__name__,
                context={key: str(value) for key, value in (context or {}).items()},
            )

    def should_report(self, failure: Failure, recovery: Optional[RecoveryResult]) -> bool:
        """Whether a failure goes to the crash reporter."""
        if failure.severity.at_least(Severity.HIGH):
            return True
        return (
            self.report_unrecovered
            and recovery is not None
            and recovery.attempted
            and not recovery.success
        )

    async def handle(
        self,
        error: Any,
        context: Optional[Mapping[str, Any]] = None,
        operation: Optional[Operation] = None,
    ) -> InterceptionOutcome:
        """
        Run one error through the interception pipeline.

        Args:
            error: Exception, Failure, FailureError or any other raised value
            context: Capture-site context added to the failure
            operation: Operation recovery strategies may re-run

        Returns:
            InterceptionOutcome listing the stages the failure went through
        """
        started = time.perf_counter()
        failure = self._normalize(error, context)
        outcome = InterceptionOutcome(
            failure=failure,
            stages=[InterceptionStage.CAPTURED, InterceptionStage.NORMALIZED],
        )
        self.metrics.record_captured(failure.kind.value, failure.severity.value)

        try:
            await self._run_stages(outcome, operation)
        except Exception as e:
            log_internal_failure(
                logger,
                "Interception stage raised",
                e,
                failure_id=failure.failure_id,
            )
        finally:
            self.metrics.record_handling((time.perf_counter() - started) * 1000)

        return outcome

    async def _run_stages(self, outcome: InterceptionOutcome, operation: Optional[Operation]) -> None:
        failure = outcome.failure

        try:
            self.structured_logger.log_failure(failure)
            outcome.stages.append(InterceptionStage.LOGGED)
        except Exception as e:
            log_internal_failure(logger, "Failed to log failure", e, failure_id=failure.failure_id)

        if failure.severity.rank > Severity.LOW.rank:
            try:
                outcome.recovery = await self.recovery_engine.recover(failure, operation)
            except Exception as e:
                log_internal_failure(logger, "Recovery engine raised", e, failure_id=failure.failure_id)
                outcome.recovery = RecoveryResult.failed(f"Recovery engine error: {e}")
            if outcome.recovery.attempted:
                outcome.stages.append(InterceptionStage.RECOVERY_ATTEMPTED)
                self.metrics.record_recovery(outcome.recovery.success)

        if self.should_report(failure, outcome.recovery):
            try:
                outcome.reported = await self.crash_reporter.report_failure(failure)
            except Exception as e:
                log_internal_failure(logger, "Crash reporter raised", e, failure_id=failure.failure_id)
            if outcome.reported:
                outcome.stages.append(InterceptionStage.REPORTED)
                self.metrics.record_reported()

        if self.analytics is not None:
            try:
                self.analytics.submit(failure)
            except Exception as e:
                log_internal_failure(logger, "Analytics submission failed", e, failure_id=failure.failure_id)

        if failure.severity == Severity.CRITICAL:
            try:
                outcome.state_preserved = await self.state_preserver.preserve(failure)
            except Exception as e:
                log_internal_failure(logger, "State preservation failed", e, failure_id=failure.failure_id)
            if outcome.state_preserved:
                self.metrics.record_state_snapshot()

        await self._notify(outcome)

    async def _notify(self, outcome: InterceptionOutcome) -> None:
        failure = outcome.failure
        if outcome.recovered or failure.severity == Severity.INFO or not self.rate_limiter.try_acquire():
            outcome.stages.append(InterceptionStage.SUPPRESSED)
            self.metrics.record_suppressed()
            return

        notification = UserNotification(
            failure_id=failure.failure_id,
            message=failure.user_message,
            severity=failure.severity,
        )
        try:
            await self.notifier.notify(notification)
        except Exception as e:
            log_internal_failure(logger, "User notifier raised", e, failure_id=failure.failure_id)
            outcome.stages.append(InterceptionStage.SUPPRESSED)
            self.metrics.record_suppressed()
            return

        outcome.notified = True
        outcome.stages.append(InterceptionStage.USER_NOTIFIED)
        self.metrics.record_notified()

    # ========== Capture points ==========

    def _track(self, task: "asyncio.Task[Any]") -> "asyncio.Task[Any]":
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def handle_sync(
        self,
        error: Any,
        context: Optional[Mapping[str, Any]] = None,
        operation: Optional[Operation] = None,
    ) -> Optional[InterceptionOutcome]:
        """
        Handle an error from synchronous code.

        Without a running event loop the pipeline runs to completion in a
        fresh loop and the outcome is returned. Inside a running loop the
        handling is scheduled on it and None is returned.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        try:
            if loop is None:
                return asyncio.run(self.handle(error, context, operation))
            self._track(loop.create_task(self.handle(error, context, operation)))
        except Exception as e:
            log_internal_failure(logger, "Synchronous capture failed", e)
        return None

    def capture(
        self,
        func: Optional[Callable[..., Any]] = None,
        *,
        context: Optional[Mapping[str, Any]] = None,
        reraise: bool = True,
        default: Any = None,
    ) -> Any:
        """
        Decorator routing exceptions of a sync or async callable to the pipeline.

        When recovery re-ran the call successfully its value is returned.
        Otherwise the original exception is re-raised, or `default` is
        returned when ``reraise=False``.

        Example:
            @interceptor.capture(context={"screen": "profile"}, reraise=False)
            async def load_profile(user_id): ...
        """

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            capture_context: Dict[str, Any] = {
                CAPTURE_POINT_KEY: "decorator",
                "function": getattr(fn, "__qualname__", repr(fn)),
            }
            capture_context.update(context or {})

            if asyncio.iscoroutinefunction(fn):

                @functools.wraps(fn)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    try:
                        return await fn(*args, **kwargs)
                    except Exception as e:
                        async def operation() -> Any:
                            return await fn(*args, **kwargs)

                        outcome = await self.handle(e, capture_context, operation)
                        if outcome.recovered and "value" in outcome.recovery.data:
                            return outcome.recovery.data["value"]
                        if reraise:
                            raise
                        return default

                return async_wrapper

            @functools.wraps(fn)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return fn(*args, **kwargs)
                except Exception as e:
                    outcome = self.handle_sync(e, capture_context, lambda: fn(*args, **kwargs))
                    if outcome is not None and outcome.recovered and "value" in outcome.recovery.data:
                        return outcome.recovery.data["value"]
                    if reraise:
                        raise
                    return default

            return sync_wrapper

        if func is not None:
            return decorator(func)
        return decorator

    def watch_task(
        self,
        task: "asyncio.Future[Any]",
        context: Optional[Mapping[str, Any]] = None,
    ) -> "asyncio.Future[Any]":
        """Route an unhandled exception of a background task to the pipeline."""
        task_context: Dict[str, Any] = {CAPTURE_POINT_KEY: "task"}
        if isinstance(task, asyncio.Task):
            task_context["task"] = task.get_name()
        task_context.update(context or {})

        def on_done(done: "asyncio.Future[Any]") -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is None:
                return
            self._track(done.get_loop().create_task(self.handle(error, task_context)))

        task.add_done_callback(on_done)
        return task

    def spawn(
        self,
        coro: Awaitable[Any],
        name: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> "asyncio.Task[Any]":
        """Start a background task whose failure is intercepted."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self.watch_task(task, context)
        return task

    async def drain(self, timeout: Optional[float] = 5.0) -> None:
        """Wait for handling scheduled on the current event loop to finish."""
        loop = asyncio.get_running_loop()
        while True:
            pending = [task for task in self._pending if task.get_loop() is loop and not task.done()]
            if not pending:
                return
            done, _ = await asyncio.wait(pending, timeout=timeout)
            if not done:
                logger.warning(f"{len(pending)} interceptions still running after {timeout}s")
                return

    # ========== Process-wide hooks ==========

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Install sys.excepthook, threading.excepthook and, if given, the loop exception handler.

        Previous hooks are chained and restored by `uninstall`.
        """
        if self._installed:
            return
        self._previous_sys_hook = sys.excepthook
        self._previous_thread_hook = threading.excepthook
        sys.excepthook = self._sys_excepthook
        threading.excepthook = self._threading_excepthook

        if loop is not None:
            self._hooked_loop = loop
            self._previous_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._loop_exception_handler)

        self._installed = True
        logger.info("Global error hooks installed")

    def uninstall(self) -> None:
        """Restore the hooks that were active before `install`."""
        if not self._installed:
            return
        sys.excepthook = self._previous_sys_hook or sys.__excepthook__
        threading.excepthook = self._previous_thread_hook or threading.__excepthook__
        if self._hooked_loop is not None:
            self._hooked_loop.set_exception_handler(self._previous_loop_handler)
            self._hooked_loop = None
            self._previous_loop_handler = None
        self._installed = False
        logger.info("Global error hooks removed")

    @property
    def installed(self) -> bool:
        return self._installed

    def _sys_excepthook(self, exc_type, exc_value, exc_traceback) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self.handle_sync(exc_value, {CAPTURE_POINT_KEY: "sys.excepthook"})
        if self._previous_sys_hook is not None:
            self._previous_sys_hook(exc_type, exc_value, exc_traceback)

    def _threading_excepthook(self, args: "threading.ExceptHookArgs") -> None:
        if not issubclass(args.exc_type, SystemExit):
            context: Dict[str, Any] = {CAPTURE_POINT_KEY: "thread"}
            if args.thread is not None:
                context["thread"] = args.thread.name
            self.handle_sync(args.exc_value, context)
        if self._previous_thread_hook is not None:
            self._previous_thread_hook(args)

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        error = context.get("exception") or context.get("message", "Unknown event loop error")
        self._track(loop.create_task(self.handle(error, {CAPTURE_POINT_KEY: "event_loop"})))
        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)
