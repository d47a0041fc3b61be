"""
Utility modules for the Faultline error pipeline.
"""

from faultline.utils.logging import (
    ContextLoggerAdapter,
    JSONFormatter,
    get_logger,
    log_internal_failure,
    setup_logging,
)
from faultline.utils.metrics import PipelineMetrics
from faultline.utils.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
    RetryExhaustedError,
    backoff_delay,
    call_maybe_async,
    retry_async,
)

__all__ = [
    "ContextLoggerAdapter",
    "JSONFormatter",
    "get_logger",
    "log_internal_failure",
    "setup_logging",
    "PipelineMetrics",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "RetryExhaustedError",
    "backoff_delay",
    "call_maybe_async",
    "retry_async",
]
