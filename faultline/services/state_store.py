"""
Application state preservation for critical failures.

Before the user is told about a critical failure, the interceptor asks a
StatePreserver to snapshot application state so the app can resume after a
restart.
"""

import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional

import redis.asyncio as redis

from faultline.models.context import to_jsonable
from faultline.models.failure import Failure
from faultline.utils.logging import get_logger
from faultline.utils.resilience import call_maybe_async

logger = get_logger(__name__)

StateProvider = Callable[[], Any]


class StatePreserver(ABC):
    """Stores a snapshot of application state tied to a failure."""

    @abstractmethod
    async def preserve(self, failure: Failure) -> bool:
        """
        Snapshot current state for a failure.

        Returns:
            True if a snapshot was stored
        """

    async def load_latest(self) -> Optional[Dict[str, Any]]:
        """Most recent snapshot, if any."""
        return None


class NullStatePreserver(StatePreserver):
    """Used when no snapshot store is configured."""

    async def preserve(self, failure: Failure) -> bool:
        return False


class RedisStatePreserver(StatePreserver):
    """
    Keeps JSON state snapshots in Redis with a TTL.

    Snapshots are stored under ``faultline:snapshot:<failure_id>`` and the id
    of the newest one under ``faultline:snapshot:latest``.

    Args:
        state_provider: Sync or async callable returning the state to save
        redis_url: Redis URL; a short-lived client is opened per operation
        client: Existing redis.asyncio client (takes precedence over redis_url)
        ttl_seconds: Snapshot lifetime
    """

    SNAPSHOT_KEY = "faultline:snapshot:{failure_id}"
    LATEST_KEY = "faultline:snapshot:latest"

    def __init__(
        self,
        state_provider: StateProvider,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        ttl_seconds: int = 24 * 3600,
    ):
        if client is None and not redis_url:
            raise ValueError("RedisStatePreserver needs a redis_url or a client")
        self.state_provider = state_provider
        self.ttl_seconds = ttl_seconds
        self._redis_url = redis_url
        self._client = client

    @asynccontextmanager
    async def _get_client(self) -> AsyncIterator[redis.Redis]:
        """
        Yield a Redis client.

        Clients created from a URL are bound to the current event loop, so one
        is opened and closed per operation.
        """
        if self._client is not None:
            yield self._client
            return

        client = redis.Redis.from_url(self._redis_url, decode_responses=True)
        try:
            yield client
        finally:
            await client.aclose()

    def _snapshot_key(self, failure_id: str) -> str:
        return self.SNAPSHOT_KEY.format(failure_id=failure_id)

    async def preserve(self, failure: Failure) -> bool:
        state = await call_maybe_async(self.state_provider)
        snapshot = {
            "failure_id": failure.failure_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "failure": failure.to_map(),
            "state": to_jsonable(state),
        }

        async with self._get_client() as client:
            await client.set(
                self._snapshot_key(failure.failure_id),
                json.dumps(snapshot),
                ex=self.ttl_seconds,
            )
            await client.set(self.LATEST_KEY, failure.failure_id, ex=self.ttl_seconds)

        logger.info(
            f"Preserved application state for failure {failure.failure_id}",
            extra={"failure_id": failure.failure_id},
        )
        return True

    async def load(self, failure_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot stored for one failure, if it has not expired."""
        async with self._get_client() as client:
            raw = await client.get(self._snapshot_key(failure_id))
        if raw is None:
            return None
        return json.loads(raw)

    async def load_latest(self) -> Optional[Dict[str, Any]]:
        async with self._get_client() as client:
            failure_id = await client.get(self.LATEST_KEY)
        if failure_id is None:
            return None
        if isinstance(failure_id, bytes):
            failure_id = failure_id.decode("utf-8")
        return await self.load(failure_id)
