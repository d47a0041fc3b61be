"""
Failure classifier.

Maps raw exceptions into the Failure taxonomy by looking up the most specific
registered exception type along the exception's MRO.
"""

import asyncio
import errno
import json
import traceback
from typing import Any, Callable, Dict, Mapping, Optional, Type

import httpx
import redis.exceptions
from pydantic import ValidationError as PydanticValidationError

from faultline.models.failure import (
    AuthenticationFailure,
    AuthReason,
    DataFailure,
    Failure,
    FailureError,
    FieldViolation,
    NetworkFailure,
    PlatformFailure,
    Severity,
    ValidationFailure,
)
from faultline.utils.logging import get_logger, log_internal_failure

logger = get_logger(__name__)

FailureFactory = Callable[..., Failure]


def format_trace(error: BaseException) -> str:
    """Formatted traceback snapshot for an exception."""
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def _request_info(error: httpx.HTTPError) -> Dict[str, Any]:
    try:
        request = error.request
    except RuntimeError:
        return {}
    return {"endpoint": str(request.url), "method": request.method}


_AUTH_REASON_BY_STATUS = {
    401: AuthReason.TOKEN_EXPIRED,
    403: AuthReason.PERMISSION_DENIED,
}


def _http_status(error: httpx.HTTPStatusError, **common: Any) -> Failure:
    status_code = error.response.status_code
    reason = _AUTH_REASON_BY_STATUS.get(status_code)
    if reason is not None:
        context = {"status_code": status_code, **_request_info(error)}
        context.update(common.pop("context", None) or {})
        return AuthenticationFailure(reason=reason, context=context, **common)
    return NetworkFailure(
        status_code=error.response.status_code,
        **_request_info(error),
        **common,
    )


def _http_timeout(error: httpx.TimeoutException, **common: Any) -> Failure:
    return NetworkFailure(code=NetworkFailure.TIMEOUT, **_request_info(error), **common)


def _http_transport(error: httpx.TransportError, **common: Any) -> Failure:
    return NetworkFailure(code=NetworkFailure.NO_CONNECTION, **_request_info(error), **common)


def _os_error(error: OSError, **common: Any) -> Failure:
    if error.errno == errno.ENOSPC:
        return DataFailure(code=DataFailure.STORAGE_FULL, **common)
    if error.errno == errno.ENOENT:
        return DataFailure(code="NOT_FOUND", **common)
    return DataFailure(code="IO_ERROR", **common)


def _pydantic_validation(error: PydanticValidationError, **common: Any) -> Failure:
    violations = [
        FieldViolation(
            field_name=".".join(str(part) for part in item.get("loc", ())) or "__root__",
            message=item.get("msg", ""),
        )
        for item in error.errors()
    ]
    return ValidationFailure(violations=violations, **common)


def _code(failure_type: Type[Failure], code: str, **fixed: Any) -> FailureFactory:
    def factory(error: BaseException, **common: Any) -> Failure:
        if issubclass(failure_type, PlatformFailure):
            common["exception_type"] = type(error).__name__
        return failure_type(code=code, **fixed, **common)

    return factory


class FailureClassifier:
    """
    Registry of exception type → Failure factory.

    A factory is called as ``factory(error, message=..., origin_cause=...,
    trace=..., context=...)`` and returns a Failure. Exceptions with no
    registered type anywhere in their MRO become
    ``PlatformFailure(code="UNHANDLED")`` at medium severity.

    Example:
        classifier = FailureClassifier()
        classifier.register(
            PaymentDeclined,
            lambda error, **common: BusinessRuleFailure(rule="payment", **common),
        )
        failure = classifier.classify(error, {"screen": "checkout"})
    """

    def __init__(self, include_defaults: bool = True):
        self._factories: Dict[type, FailureFactory] = {}
        if include_defaults:
            self._register_defaults()

    def _register_defaults(self) -> None:
        # Transport errors
        self.register(httpx.HTTPStatusError, _http_status)
        self.register(httpx.TimeoutException, _http_timeout)
        self.register(httpx.TransportError, _http_transport)
        self.register(redis.exceptions.TimeoutError, _code(NetworkFailure, NetworkFailure.TIMEOUT))
        self.register(redis.exceptions.ConnectionError, _code(NetworkFailure, NetworkFailure.NO_CONNECTION))
        self.register(TimeoutError, _code(NetworkFailure, NetworkFailure.TIMEOUT))
        self.register(asyncio.TimeoutError, _code(NetworkFailure, NetworkFailure.TIMEOUT))
        self.register(ConnectionError, _code(NetworkFailure, NetworkFailure.NO_CONNECTION))

        # Storage and data errors
        self.register(PermissionError, _code(PlatformFailure, "PERMISSION_DENIED"))
        self.register(OSError, _os_error)
        self.register(json.JSONDecodeError, _code(DataFailure, "MALFORMED"))
        self.register(UnicodeDecodeError, _code(DataFailure, "MALFORMED"))
        self.register(LookupError, _code(DataFailure, "NOT_FOUND"))

        # Input validation
        self.register(PydanticValidationError, _pydantic_validation)
        self.register(ValueError, _code(ValidationFailure, "INVALID_INPUT"))

        # Runtime
        self.register(MemoryError, _code(PlatformFailure, "OUT_OF_MEMORY"))
        self.register(RecursionError, _code(PlatformFailure, "RECURSION_LIMIT"))
        self.register(NotImplementedError, _code(PlatformFailure, "NOT_SUPPORTED"))

    def register(self, exc_type: type, factory: FailureFactory) -> None:
        """
        Map an exception type (and its subclasses) to a Failure factory.

        Registering the same type again replaces its factory.
        """
        if not (isinstance(exc_type, type) and issubclass(exc_type, BaseException)):
            raise TypeError(f"{exc_type!r} is not an exception type")
        self._factories[exc_type] = factory

    def factory_for(self, exc_type: type) -> Optional[FailureFactory]:
        """Most specific registered factory along the MRO of `exc_type`."""
        for klass in exc_type.__mro__:
            factory = self._factories.get(klass)
            if factory is not None:
                return factory
        return None

    def classify(self, error: Any, context: Optional[Mapping[str, Any]] = None) -> Failure:
        """
        Normalize any error value into a Failure.

        Never raises: a failing factory falls back to PlatformFailure/UNHANDLED.

        Args:
            error: Exception, Failure, FailureError or any other raised value
            context: Capture-site context merged into the failure context

        Returns:
            Failure describing the error
        """
        extra = dict(context or {})

        if isinstance(error, Failure):
            return error.with_context(**extra) if extra else error
        if isinstance(error, FailureError):
            failure = error.failure
            return failure.with_context(**extra) if extra else failure
        if not isinstance(error, BaseException):
            return PlatformFailure(
                code=PlatformFailure.UNHANDLED,
                message=str(error),
                exception_type=type(error).__name__,
                context=extra,
            )

        common = {
            "message": str(error) or type(error).__name__,
            "origin_cause": error,
            "trace": format_trace(error),
            "context": extra,
        }
        factory = self.factory_for(type(error))
        if factory is not None:
            try:
                return factory(error, **common)
            except Exception as e:
                log_internal_failure(
                    logger,
                    f"Failure factory for {type(error).__name__} raised",
                    e,
                    exception_type=type(error).__name__,
                )

        return PlatformFailure(
            code=PlatformFailure.UNHANDLED,
            severity=Severity.MEDIUM,
            exception_type=type(error).__name__,
            **common,
        )
