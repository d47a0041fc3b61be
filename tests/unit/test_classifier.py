"""
Unit tests for FailureClassifier.
"""

import errno
import json

import httpx
import pytest
import redis.exceptions
from pydantic import BaseModel, ValidationError

from faultline.models import (
    AuthenticationFailure,
    AuthReason,
    BusinessRuleFailure,
    DataFailure,
    FailureKind,
    NetworkFailure,
    PlatformFailure,
    Severity,
    ValidationFailure,
)
from faultline.services.classifier import FailureClassifier


class PaymentDeclined(Exception):
    pass


class CardExpired(PaymentDeclined):
    pass


class Signup(BaseModel):
    email: str
    age: int


@pytest.fixture
def classifier():
    return FailureClassifier()


def test_http_status_error(classifier):
    """Test HTTP status errors keep status, endpoint and method."""
    request = httpx.Request("POST", "https://api.example.com/orders")
    response = httpx.Response(503, request=request)
    error = httpx.HTTPStatusError("service unavailable", request=request, response=response)

    failure = classifier.classify(error)

    assert isinstance(failure, NetworkFailure)
    assert failure.status_code == 503
    assert failure.code == "SERVER_ERROR"
    assert failure.endpoint == "https://api.example.com/orders"
    assert failure.method == "POST"
    assert failure.origin_cause is error


@pytest.mark.parametrize(
    "status,reason,severity",
    [
        (401, AuthReason.TOKEN_EXPIRED, Severity.MEDIUM),
        (403, AuthReason.PERMISSION_DENIED, Severity.HIGH),
    ],
)
def test_http_auth_status_is_authentication(classifier, status, reason, severity):
    """Test 401 and 403 responses become authentication failures."""
    request = httpx.Request("GET", "https://api.example.com/profile")
    response = httpx.Response(status, request=request)
    error = httpx.HTTPStatusError("unauthorized", request=request, response=response)

    failure = classifier.classify(error, {"screen": "profile"})

    assert isinstance(failure, AuthenticationFailure)
    assert failure.reason == reason
    assert failure.code == reason.value.upper()
    assert failure.severity == severity
    assert failure.context == {
        "status_code": status,
        "endpoint": "https://api.example.com/profile",
        "method": "GET",
        "screen": "profile",
    }


@pytest.mark.parametrize(
    "error,code",
    [
        (httpx.ReadTimeout("read timed out"), "TIMEOUT"),
        (httpx.ConnectError("refused"), "NO_CONNECTION"),
        (redis.exceptions.ConnectionError("redis down"), "NO_CONNECTION"),
        (redis.exceptions.TimeoutError("redis slow"), "TIMEOUT"),
        (TimeoutError("slow"), "TIMEOUT"),
        (ConnectionResetError("reset"), "NO_CONNECTION"),
    ],
)
def test_network_errors(classifier, error, code):
    """Test transport exceptions become network failures."""
    failure = classifier.classify(error)
    assert isinstance(failure, NetworkFailure)
    assert failure.code == code


@pytest.mark.parametrize(
    "error,code",
    [
        (OSError(errno.ENOSPC, "No space left on device"), "STORAGE_FULL"),
        (FileNotFoundError(errno.ENOENT, "missing"), "NOT_FOUND"),
        (OSError(errno.EIO, "I/O error"), "IO_ERROR"),
        (KeyError("order_id"), "NOT_FOUND"),
    ],
)
def test_data_errors(classifier, error, code):
    """Test storage and lookup exceptions become data failures."""
    failure = classifier.classify(error)
    assert isinstance(failure, DataFailure)
    assert failure.code == code


def test_json_decode_error_is_malformed(classifier):
    """Test undecodable JSON is a malformed data failure, not a validation one."""
    try:
        json.loads("{not json")
    except json.JSONDecodeError as e:
        failure = classifier.classify(e)
    assert isinstance(failure, DataFailure)
    assert failure.code == "MALFORMED"


def test_pydantic_validation_error(classifier):
    """Test pydantic errors become field violations."""
    try:
        Signup(email="a@example.com", age="old")
    except ValidationError as e:
        failure = classifier.classify(e)

    assert isinstance(failure, ValidationFailure)
    assert [violation.field_name for violation in failure.violations] == ["age"]
    assert failure.severity == Severity.LOW


def test_value_error_is_validation(classifier):
    """Test a plain ValueError is treated as invalid input."""
    failure = classifier.classify(ValueError("quantity must be positive"))
    assert isinstance(failure, ValidationFailure)
    assert failure.code == "INVALID_INPUT"


def test_permission_error_is_platform(classifier):
    """Test PermissionError maps to a platform permission failure."""
    failure = classifier.classify(PermissionError("denied"))
    assert isinstance(failure, PlatformFailure)
    assert failure.code == "PERMISSION_DENIED"
    assert failure.exception_type == "PermissionError"


def test_unknown_exception_is_unhandled(classifier):
    """Test unmapped exceptions become medium-severity UNHANDLED failures."""
    failure = classifier.classify(RuntimeError("boom"), {"screen": "cart"})

    assert isinstance(failure, PlatformFailure)
    assert failure.code == "UNHANDLED"
    assert failure.severity == Severity.MEDIUM
    assert failure.exception_type == "RuntimeError"
    assert failure.context["screen"] == "cart"
    assert "RuntimeError: boom" in failure.trace


def test_non_exception_values(classifier):
    """Test raised values that are not exceptions are still classified."""
    failure = classifier.classify("plain string error")
    assert failure.kind == FailureKind.PLATFORM
    assert failure.message == "plain string error"


def test_failure_passed_through_with_context(classifier):
    """Test an existing failure keeps its identity and gains context."""
    original = BusinessRuleFailure(message="over limit", rule="daily_limit")

    failure = classifier.classify(original, {"screen": "transfer"})
    unwrapped = classifier.classify(original.as_error())

    assert failure.failure_id == original.failure_id
    assert failure.context["screen"] == "transfer"
    assert unwrapped is original


def test_custom_mapping_uses_most_specific_type(classifier):
    """Test registered types apply to subclasses and the closest match wins."""
    classifier.register(
        PaymentDeclined,
        lambda error, **common: BusinessRuleFailure(rule="payment", **common),
    )

    failure = classifier.classify(CardExpired("card expired"))

    assert isinstance(failure, BusinessRuleFailure)
    assert failure.rule == "payment"


def test_failing_factory_falls_back(classifier):
    """Test a raising factory never escapes classify."""

    def broken(error, **common):
        raise RuntimeError("factory bug")

    classifier.register(PaymentDeclined, broken)
    failure = classifier.classify(PaymentDeclined("declined"))

    assert isinstance(failure, PlatformFailure)
    assert failure.code == "UNHANDLED"


def test_register_rejects_non_exception_types(classifier):
    """Test only exception types can be registered."""
    with pytest.raises(TypeError):
        classifier.register(str, lambda error, **common: None)


def test_without_defaults_everything_is_unhandled():
    """Test an empty classifier maps every exception to UNHANDLED."""
    failure = FailureClassifier(include_defaults=False).classify(TimeoutError("slow"))
    assert failure.code == "UNHANDLED"
