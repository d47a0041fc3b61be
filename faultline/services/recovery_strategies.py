"""
Built-in recovery strategies.

- NetworkRecoveryStrategy: connectivity check, then retry with backoff
- AuthenticationRecoveryStrategy: credential refresh and biometric fallback
- StorageRecoveryStrategy: local state reset and cache eviction
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from faultline.models.failure import AuthenticationFailure, AuthReason, DataFailure, Failure, NetworkFailure
from faultline.models.recovery import RecoveryResult
from faultline.services.recovery_engine import Operation, RecoveryStrategy
from faultline.utils.logging import get_logger
from faultline.utils.resilience import call_maybe_async, retry_async

logger = get_logger(__name__)


class ConnectivityChecker(ABC):
    """Answers whether the network is reachable right now."""

    @abstractmethod
    async def is_connected(self) -> bool:
        """Return True if the network appears reachable."""


class AlwaysConnected(ConnectivityChecker):
    async def is_connected(self) -> bool:
        return True


class HttpConnectivityChecker(ConnectivityChecker):
    """
    Probes a URL with a lightweight HTTP request.

    Any response, even an error status, counts as connected; only transport
    failures count as offline.

    Args:
        probe_url: URL to probe
        timeout: Probe timeout in seconds
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        probe_url: str,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.probe_url = probe_url
        self.timeout = timeout
        self._transport = transport

    async def is_connected(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                await client.head(self.probe_url)
        except httpx.HTTPError as e:
            logger.debug(
                f"Connectivity probe failed: {e}",
                extra={"probe_url": self.probe_url},
            )
            return False
        return True


class NetworkRecoveryStrategy(RecoveryStrategy):
    """
    Retries transient network failures.

    Only failures with a transient status or code are retried (5xx, 408, 429,
    timeouts, connection loss); other client errors fail immediately. Each
    retry waits ``base_delay * 2 ** attempt`` seconds, capped at `max_delay`.

    Args:
        connectivity: Checker consulted before retrying
        max_retries: Maximum number of retries of the operation
        base_delay: Delay before the first retry
        max_delay: Upper bound for a single delay
        sleep: Awaitable sleep (injectable for tests)
    """

    def __init__(
        self,
        connectivity: Optional[ConnectivityChecker] = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.connectivity = connectivity or AlwaysConnected()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    async def attempt(
        self,
        failure: Failure,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        if not isinstance(failure, NetworkFailure):
            return RecoveryResult.failed("Not a network failure")
        if not failure.is_transient:
            return RecoveryResult.failed(
                f"Network failure {failure.code} is not transient",
                status_code=failure.status_code,
            )
        if not await self.connectivity.is_connected():
            return RecoveryResult.failed("No network connectivity")
        if operation is None:
            return RecoveryResult.failed("No operation to retry", retry_operation=True)
        if self.max_retries <= 0:
            return RecoveryResult.failed("Retries disabled")

        try:
            value, retries = await retry_async(
                operation,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self._sleep,
            )
        except Exception as e:
            return RecoveryResult.failed(
                f"Retry exhausted after {self.max_retries} attempts: {e}",
                retries=self.max_retries,
            )

        return RecoveryResult.succeeded(
            f"Operation succeeded after {retries} retries",
            value=value,
            retries=retries,
        )


class AuthenticationRecoveryStrategy(RecoveryStrategy):
    """
    Recovers expired sessions and failed biometric checks.

    - token_expired: calls `refresher`, then re-runs the operation once if one
      was supplied, otherwise returns a ``retry_operation`` hint
    - biometric_failed: succeeds with a ``fallback_auth`` hint so the caller
      can offer another sign-in method

    Args:
        refresher: Sync or async zero-argument callable that refreshes credentials
        fallback_auth: Value of the fallback hint
    """

    def __init__(
        self,
        refresher: Optional[Callable[[], Any]] = None,
        fallback_auth: str = "password",
    ):
        self.refresher = refresher
        self.fallback_auth = fallback_auth

    async def attempt(
        self,
        failure: Failure,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        if not isinstance(failure, AuthenticationFailure):
            return RecoveryResult.failed("Not an authentication failure")

        if failure.reason == AuthReason.BIOMETRIC_FAILED:
            return RecoveryResult.succeeded(
                "Falling back to alternate authentication",
                fallback_auth=self.fallback_auth,
            )

        if failure.reason != AuthReason.TOKEN_EXPIRED:
            return RecoveryResult.failed(f"Cannot recover from {failure.reason.value}")
        if self.refresher is None:
            return RecoveryResult.failed("No credential refresher configured")

        try:
            await call_maybe_async(self.refresher)
        except Exception as e:
            return RecoveryResult.failed(f"Credential refresh failed: {e}")

        if operation is None:
            return RecoveryResult.succeeded("Credentials refreshed", retry_operation=True)

        try:
            value = await call_maybe_async(operation)
        except Exception as e:
            return RecoveryResult.failed(f"Operation failed after credential refresh: {e}")
        return RecoveryResult.succeeded("Credentials refreshed and operation re-run", value=value)


class LocalStore(ABC):
    """Local persistence operations the storage strategy relies on."""

    @abstractmethod
    async def clear_local_state(self) -> None:
        """Discard local data that can no longer be trusted."""

    @abstractmethod
    async def resync_from_remote(self) -> None:
        """Rebuild local data from the remote source of truth."""

    @abstractmethod
    async def evict_cache(self) -> int:
        """Free cache space and return the number of bytes freed."""


class StorageRecoveryStrategy(RecoveryStrategy):
    """
    Recovers corrupted or full local storage.

    - CORRUPTED: clear local state, then resync from remote
    - STORAGE_FULL: evict cache; succeeds only when bytes were freed
    """

    def __init__(self, store: LocalStore):
        self.store = store

    async def attempt(
        self,
        failure: Failure,
        operation: Optional[Operation] = None,
    ) -> RecoveryResult:
        if not isinstance(failure, DataFailure):
            return RecoveryResult.failed("Not a data failure")

        if failure.code == DataFailure.CORRUPTED:
            await self.store.clear_local_state()
            await self.store.resync_from_remote()
            logger.info(
                "Local state rebuilt after corruption",
                extra={"table_name": failure.table_name, "failure_id": failure.failure_id},
            )
            return RecoveryResult.succeeded("Local state cleared and resynced")

        if failure.code == DataFailure.STORAGE_FULL:
            freed = await self.store.evict_cache()
            if freed > 0:
                return RecoveryResult.succeeded(f"Evicted {freed} bytes of cache", freed_bytes=freed)
            return RecoveryResult.failed("Cache eviction freed no space", freed_bytes=0)

        return RecoveryResult.failed(f"No storage recovery for {failure.code}")
