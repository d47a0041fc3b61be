"""
Crash/error reporter.

Forwards qualifying failures to a crash-reporting backend with process
attributes and an anonymized subject id. Reporting is best effort: it never
raises into the interceptor.
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import httpx

from faultline.models.failure import Failure
from faultline.utils.logging import get_logger, log_internal_failure
from faultline.utils.resilience import CircuitBreaker, CircuitBreakerOpenError

logger = get_logger(__name__)

SUBJECT_CONTEXT_KEY = "user_id"


def anonymize_subject(user_id: Any, salt: str) -> str:
    """Salted SHA-256 of a user id."""
    return hashlib.sha256(f"{salt}:{user_id}".encode("utf-8")).hexdigest()


class CrashBackend(ABC):
    """Transport for crash reports."""

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one report.

        Raises:
            Exception: If the backend did not accept the report
        """


class HttpCrashBackend(CrashBackend):
    """
    POSTs crash reports as JSON to an HTTP collector.

    A fresh AsyncClient is used per report so the backend works from any
    event loop, including the short-lived loops used for synchronous capture.

    Args:
        url: Collector URL
        api_key: Optional key sent in the X-API-Key header
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._headers = {"X-API-Key": api_key} if api_key else {}
        self._transport = transport

    async def send(self, payload: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            transport=self._transport,
        ) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


class CrashReporter(ABC):
    """Receives failures that warrant a crash report."""

    @abstractmethod
    async def report_failure(self, failure: Failure) -> bool:
        """
        Report a failure.

        Returns:
            True if the backend accepted the report
        """


class NullCrashReporter(CrashReporter):
    """Reporter used when no crash backend is configured."""

    async def report_failure(self, failure: Failure) -> bool:
        logger.debug(
            f"No crash backend configured, skipping report for {failure.failure_id}",
            extra={"failure_id": failure.failure_id},
        )
        return False


class BackendCrashReporter(CrashReporter):
    """
    Builds crash payloads and sends them through a CrashBackend.

    Payload: the failure's ``to_map()`` projection plus ``attributes``
    (app_version, platform, build_mode) and ``subject_id``. A ``user_id``
    found in the failure context is replaced by its salted hash and never
    leaves the process.

    Args:
        backend: Transport for reports
        attributes: Process attributes attached to every report
        salt: Salt for subject anonymization
        circuit_breaker: Breaker guarding the backend (a default one is created)
    """

    def __init__(
        self,
        backend: CrashBackend,
        attributes: Optional[Mapping[str, Any]] = None,
        salt: str = "faultline",
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.backend = backend
        self.attributes = dict(attributes or {})
        self.salt = salt
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.reported_count = 0
        self.dropped_count = 0

    def build_payload(self, failure: Failure) -> Dict[str, Any]:
        """Crash report body for one failure."""
        payload = failure.to_map()
        context = dict(payload.get("context") or {})
        user_id = context.pop(SUBJECT_CONTEXT_KEY, None)
        payload["context"] = context
        payload["subject_id"] = anonymize_subject(user_id, self.salt) if user_id is not None else None
        payload["attributes"] = dict(self.attributes)
        return payload

    async def report_failure(self, failure: Failure) -> bool:
        try:
            payload = self.build_payload(failure)
            await self.circuit_breaker.call(lambda: self.backend.send(payload))
        except CircuitBreakerOpenError as e:
            self.dropped_count += 1
            logger.warning(
                f"Crash report for {failure.failure_id} dropped: {e}",
                extra={"failure_id": failure.failure_id},
            )
            return False
        except Exception as e:
            self.dropped_count += 1
            log_internal_failure(
                logger,
                "Crash backend rejected report",
                e,
                failure_id=failure.failure_id,
            )
            return False

        self.reported_count += 1
        logger.debug(
            f"Crash report sent for {failure.failure_id}",
            extra={"failure_id": failure.failure_id},
        )
        return True
