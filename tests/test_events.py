"""
Tests for the Redis storage change stream reader
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from marketcart.storage.events import RedisStorageEvents, StorageEvent, StorageEventHub


@pytest.fixture
def hub():
    return StorageEventHub()


@pytest.fixture
def async_redis():
    redis = AsyncMock()
    redis.xrevrange.return_value = [["5-0", {"data": "{}"}]]
    redis.xrange.return_value = []
    return redis


def _entry(entry_id, event):
    return [entry_id, {"data": event.to_json()}]


class TestRedisStorageEvents:
    """Tests for polling the profile stream."""

    @pytest.mark.asyncio
    async def test_starts_after_latest(self, hub, async_redis):
        """Test history written before start is skipped."""
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis)

        await reader.poll_once()

        async_redis.xrevrange.assert_awaited_once_with("stream:storage:profile-1", end="+", start="-", count=1)
        async_redis.xrange.assert_awaited_once_with("stream:storage:profile-1", start="(5-0", end="+", count=50)

    @pytest.mark.asyncio
    async def test_empty_stream(self, hub, async_redis):
        async_redis.xrevrange.return_value = []
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis)

        await reader.start_from_latest()

        assert reader.last_id == "0"

    @pytest.mark.asyncio
    async def test_dispatches_to_other_tabs(self, hub, async_redis):
        tab_a, tab_b = [], []
        hub.add_listener("tab-a", tab_a.append)
        hub.add_listener("tab-b", tab_b.append)
        event = StorageEvent("marketplace-cart", None, "[]", "tab-a")
        async_redis.xrange.return_value = [_entry("6-0", event)]
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis)

        dispatched = await reader.poll_once()

        assert dispatched == 1
        assert tab_a == []
        assert tab_b == [event]
        assert reader.last_id == "6-0"

    @pytest.mark.asyncio
    async def test_flat_field_list(self, hub, async_redis):
        """Test entries returned as flat [field, value] lists are understood."""
        seen = []
        hub.add_listener("tab-b", seen.append)
        event = StorageEvent("k", None, "v", "tab-a")
        async_redis.xrange.return_value = [["6-0", ["data", event.to_json()]]]
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis)

        await reader.poll_once()

        assert seen == [event]

    @pytest.mark.asyncio
    async def test_invalid_entries_skipped(self, hub, async_redis):
        async_redis.xrange.return_value = [
            ["6-0", {"data": "not json"}],
            ["7-0", {"other": "x"}],
            _entry("8-0", StorageEvent("k", None, "v", "tab-a")),
        ]
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis)

        assert await reader.poll_once() == 1
        assert reader.last_id == "8-0"

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, hub, async_redis):
        """Test the poll loop survives read errors and stops on request."""
        async_redis.xrange.side_effect = [RuntimeError("network"), [], [], [], [], []]
        reader = RedisStorageEvents("profile-1", hub, redis=async_redis, poll_interval=0.01)

        task = asyncio.create_task(reader.run())
        await asyncio.sleep(0.03)
        reader.stop()
        await asyncio.wait_for(task, timeout=1)

        assert async_redis.xrange.await_count >= 2
