"""
Tests for the composite status cache.
"""

import json
from unittest.mock import AsyncMock

import pytest

from api_gateway.services.status_cache import StatusCache
from shared.errors import RetryableError
from shared.models.progress import ProgressSnapshot

SNAPSHOT = ProgressSnapshot(
    job_id="composite-1",
    kind="composite",
    status="generating",
    stage="video",
    overall_progress=40,
    current_clip=1,
    total_clips=3,
)


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.mark.asyncio
async def test_set_then_get(redis_client):
    cache = StatusCache(redis_client, ttl_seconds=5)

    await cache.set("composite-1", "user-1", SNAPSHOT)

    key, payload = redis_client.set.await_args.args
    assert key == "composite_status:composite-1"
    assert redis_client.set.await_args.kwargs == {"ex": 5}

    redis_client.get.return_value = payload
    cached = await cache.get("composite-1")

    assert cached["owner_id"] == "user-1"
    assert cached["snapshot"] == SNAPSHOT


@pytest.mark.asyncio
async def test_miss_and_malformed_entries(redis_client):
    cache = StatusCache(redis_client)

    redis_client.get.return_value = None
    assert await cache.get("composite-1") is None

    redis_client.get.return_value = "{not json"
    assert await cache.get("composite-1") is None

    redis_client.get.return_value = json.dumps({"snapshot": {}})
    assert await cache.get("composite-1") is None


@pytest.mark.asyncio
async def test_redis_errors_are_ignored(redis_client):
    redis_client.get.side_effect = RetryableError("Redis GET failed")
    redis_client.set.side_effect = RetryableError("Redis SET failed")
    redis_client.delete.side_effect = RetryableError("Redis DELETE failed")
    cache = StatusCache(redis_client)

    assert await cache.get("composite-1") is None
    await cache.set("composite-1", "user-1", SNAPSHOT)
    await cache.invalidate("composite-1")


@pytest.mark.asyncio
async def test_without_redis_everything_is_a_no_op():
    cache = StatusCache()

    await cache.set("composite-1", "user-1", SNAPSHOT)
    assert await cache.get("composite-1") is None
    await cache.invalidate("composite-1")
    await cache.close()
