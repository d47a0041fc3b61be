"""
Unit tests for state preservation.
"""

import fakeredis
import pytest

from faultline.models import DataFailure
from faultline.services.state_store import NullStatePreserver, RedisStatePreserver


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.mark.asyncio
async def test_preserve_and_load(redis_client):
    """Test a snapshot is stored with its failure and state."""
    preserver = RedisStatePreserver(lambda: {"cart": ["sku-1"], "screen": "checkout"}, client=redis_client)
    failure = DataFailure(message="corrupt", code="CORRUPTED")

    assert await preserver.preserve(failure)

    snapshot = await preserver.load(failure.failure_id)
    assert snapshot["state"] == {"cart": ["sku-1"], "screen": "checkout"}
    assert snapshot["failure"]["code"] == "CORRUPTED"
    assert (await preserver.load_latest())["failure_id"] == failure.failure_id


@pytest.mark.asyncio
async def test_snapshot_has_ttl(redis_client):
    """Test snapshots expire."""
    preserver = RedisStatePreserver(lambda: {}, client=redis_client, ttl_seconds=120)
    failure = DataFailure(message="corrupt", code="CORRUPTED")
    await preserver.preserve(failure)

    ttl = await redis_client.ttl(RedisStatePreserver.SNAPSHOT_KEY.format(failure_id=failure.failure_id))
    assert 0 < ttl <= 120


@pytest.mark.asyncio
async def test_async_state_provider(redis_client):
    """Test the state provider may be a coroutine function."""

    async def provider():
        return {"draft": "hello"}

    preserver = RedisStatePreserver(provider, client=redis_client)
    failure = DataFailure(message="corrupt", code="CORRUPTED")
    await preserver.preserve(failure)

    assert (await preserver.load(failure.failure_id))["state"] == {"draft": "hello"}


@pytest.mark.asyncio
async def test_latest_tracks_newest(redis_client):
    """Test load_latest returns the most recent snapshot."""
    preserver = RedisStatePreserver(lambda: {}, client=redis_client)
    first = DataFailure(message="a", code="CORRUPTED")
    second = DataFailure(message="b", code="CORRUPTED")
    await preserver.preserve(first)
    await preserver.preserve(second)

    assert (await preserver.load_latest())["failure_id"] == second.failure_id


@pytest.mark.asyncio
async def test_missing_snapshot(redis_client):
    """Test unknown ids and an empty store return None."""
    preserver = RedisStatePreserver(lambda: {}, client=redis_client)
    assert await preserver.load("unknown") is None
    assert await preserver.load_latest() is None


def test_requires_url_or_client():
    """Test construction fails without a Redis location."""
    with pytest.raises(ValueError):
        RedisStatePreserver(lambda: {})


@pytest.mark.asyncio
async def test_null_preserver():
    """Test the null preserver stores nothing."""
    preserver = NullStatePreserver()
    assert not await preserver.preserve(DataFailure(message="x", code="CORRUPTED"))
    assert await preserver.load_latest() is None
