"""
Unit tests for crash reporting.
"""

import json

import httpx
import pytest

from faultline.models import DataFailure, PlatformFailure
from faultline.services.crash_reporter import (
    BackendCrashReporter,
    CrashBackend,
    HttpCrashBackend,
    NullCrashReporter,
    anonymize_subject,
)
from faultline.utils.resilience import CircuitBreaker, CircuitState


class MemoryBackend(CrashBackend):
    def __init__(self, error=None):
        self.error = error
        self.payloads = []

    async def send(self, payload):
        if self.error is not None:
            raise self.error
        self.payloads.append(payload)


ATTRIBUTES = {"app_version": "2.1.0", "platform": "linux", "build_mode": "release"}


@pytest.mark.asyncio
async def test_payload_anonymizes_user():
    """Test the user id is hashed and removed from the context."""
    backend = MemoryBackend()
    reporter = BackendCrashReporter(backend, attributes=ATTRIBUTES, salt="pepper")
    failure = DataFailure(message="corrupt", code="CORRUPTED", context={"user_id": "alice", "screen": "sync"})

    assert await reporter.report_failure(failure)

    payload = backend.payloads[0]
    assert payload["subject_id"] == anonymize_subject("alice", "pepper")
    assert payload["context"] == {"screen": "sync"}
    assert "alice" not in json.dumps(payload)
    assert payload["attributes"] == ATTRIBUTES
    assert payload["failure_id"] == failure.failure_id
    assert payload["severity"] == "critical"
    assert reporter.reported_count == 1


@pytest.mark.asyncio
async def test_payload_without_user():
    """Test subject_id is null when no user is known."""
    reporter = BackendCrashReporter(MemoryBackend())
    payload = reporter.build_payload(PlatformFailure(message="oom", code="OUT_OF_MEMORY"))
    assert payload["subject_id"] is None


def test_anonymization_is_salted():
    """Test the same user hashes differently under different salts."""
    assert anonymize_subject("u1", "a") == anonymize_subject("u1", "a")
    assert anonymize_subject("u1", "a") != anonymize_subject("u1", "b")


@pytest.mark.asyncio
async def test_backend_error_never_raises():
    """Test a failing backend is contained and counted."""
    reporter = BackendCrashReporter(MemoryBackend(error=ConnectionError("collector down")))

    assert not await reporter.report_failure(PlatformFailure(message="boom", code="OUT_OF_MEMORY"))
    assert reporter.dropped_count == 1


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    """Test the breaker stops calling a backend that keeps failing."""
    backend = MemoryBackend(error=ConnectionError("collector down"))
    breaker = CircuitBreaker(failure_threshold=2, timeout=60)
    reporter = BackendCrashReporter(backend, circuit_breaker=breaker)
    failure = PlatformFailure(message="boom", code="OUT_OF_MEMORY")

    for _ in range(3):
        assert not await reporter.report_failure(failure)

    assert breaker.state == CircuitState.OPEN
    assert reporter.dropped_count == 3


@pytest.mark.asyncio
async def test_null_reporter():
    """Test the null reporter accepts nothing."""
    assert not await NullCrashReporter().report_failure(PlatformFailure(message="x"))


class TestHttpCrashBackend:
    """Tests for HttpCrashBackend."""

    @pytest.mark.asyncio
    async def test_posts_json_with_api_key(self):
        """Test reports are POSTed as JSON with the API key header."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(202)

        backend = HttpCrashBackend(
            "https://crash.example.com/reports",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )
        await backend.send({"failure_id": "abc"})

        assert requests[0].method == "POST"
        assert requests[0].headers["X-API-Key"] == "secret"
        assert json.loads(requests[0].content) == {"failure_id": "abc"}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        """Test a rejected report raises so the reporter can count it."""
        backend = HttpCrashBackend(
            "https://crash.example.com/reports",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await backend.send({"failure_id": "abc"})
