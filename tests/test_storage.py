"""
Tests for storage backends and the safe storage adapter
"""

import json
import pytest
from unittest.mock import Mock

from upstash_redis.errors import UpstashError

from marketcart.errors import QuotaExceededError, StorageUnavailableError
from marketcart.storage.adapter import FallbackCart, SafeStorage
from marketcart.storage.backends import LocalStorage, RedisStorage, entry_size
from marketcart.storage.events import StorageEvent, StorageEventHub


class TestLocalStorage:
    """Tests for the in-process profile storage."""

    def test_set_get_delete(self):
        storage = LocalStorage()
        storage.set("a", "1")

        assert storage.get("a") == "1"
        assert storage.keys() == ["a"]

        storage.delete("a")

        assert storage.get("a") is None
        assert len(storage) == 0

    def test_quota_enforced(self):
        """Test a write over quota raises and keeps the previous value."""
        storage = LocalStorage(quota_bytes=20)
        storage.set("k", "small")

        with pytest.raises(QuotaExceededError) as exc_info:
            storage.set("k", "x" * 50)

        assert exc_info.value.key == "k"
        assert storage.get("k") == "small"

    def test_overwrite_counts_replaced_value(self):
        """Test replacing a value only needs room for the difference."""
        storage = LocalStorage(quota_bytes=12)
        storage.set("k", "x" * 10)
        storage.set("k", "y" * 11)

        assert storage.used_bytes() == entry_size("k", "y" * 11)

    def test_events_skip_source_tab(self):
        """Test only other tabs hear about a change."""
        storage = LocalStorage()
        tab_a, tab_b = [], []
        storage.events.add_listener("tab-a", tab_a.append)
        storage.events.add_listener("tab-b", tab_b.append)

        storage.set("cart", "[]", source="tab-a")

        assert tab_a == []
        assert tab_b == [StorageEvent("cart", None, "[]", "tab-a")]

    def test_no_event_without_change(self):
        """Test rewriting the same value or deleting a missing key is silent."""
        storage = LocalStorage()
        seen = []
        storage.events.add_listener("tab-b", seen.append)

        storage.set("cart", "[]", source="tab-a")
        storage.set("cart", "[]", source="tab-a")
        storage.delete("missing", source="tab-a")

        assert len(seen) == 1


class TestStorageEventHub:
    """Tests for listener registration."""

    def test_remove_listener(self):
        hub = StorageEventHub()
        seen = []
        remove = hub.add_listener("tab-b", seen.append)

        remove()
        remove()
        hub.dispatch(StorageEvent("k", None, "v", "tab-a"))

        assert seen == []
        assert hub.listener_count == 0

    def test_failing_listener_isolated(self):
        """Test one failing listener does not stop the others."""
        hub = StorageEventHub()
        seen = []
        hub.add_listener("tab-b", Mock(side_effect=RuntimeError("boom")))
        hub.add_listener("tab-c", seen.append)

        hub.dispatch(StorageEvent("k", None, "v", "tab-a"))

        assert len(seen) == 1

    def test_event_json(self):
        event = StorageEvent("cart", "old", None, "tab-a")

        assert StorageEvent.from_json(event.to_json()) == event


class TestSafeStorage:
    """Tests for the never-raising adapter."""

    def test_write_reports_quota(self):
        storage = SafeStorage(LocalStorage(quota_bytes=5), tab_id="tab-a")

        assert storage.write("key", "value-too-long") is False
        assert storage.write("k", "v") is True

    def test_backend_failures_swallowed(self):
        """Test backend errors become False / None."""
        backend = Mock()
        backend.get.side_effect = StorageUnavailableError("down")
        backend.set.side_effect = StorageUnavailableError("down")
        backend.delete.side_effect = StorageUnavailableError("down")
        storage = SafeStorage(backend, tab_id="tab-a")

        assert storage.read("k") is None
        assert storage.write("k", "v") is False
        assert storage.delete("k") is False

    def test_unexpected_errors_swallowed(self):
        """Test errors outside the storage hierarchy never escape either."""
        backend = Mock()
        backend.get.side_effect = RuntimeError("boom")
        backend.set.side_effect = ConnectionError("reset")
        backend.delete.side_effect = OSError("closed")
        storage = SafeStorage(backend, tab_id="tab-a")

        assert storage.read("k") is None
        assert storage.write("k", "v") is False
        assert storage.delete("k") is False

    def test_writes_tagged_with_tab(self):
        backend = LocalStorage()
        seen = []
        backend.events.add_listener("tab-b", seen.append)

        SafeStorage(backend, tab_id="tab-a").write("k", "v")

        assert seen[0].source == "tab-a"

    def test_default_tab_ids_unique(self):
        backend = LocalStorage()

        assert SafeStorage(backend).tab_id != SafeStorage(backend).tab_id

    def test_listener_ignores_own_writes(self):
        backend = LocalStorage()
        tab_a = SafeStorage(backend, tab_id="tab-a")
        tab_b = SafeStorage(backend, tab_id="tab-b")
        seen_a, seen_b = [], []
        tab_a.add_listener(seen_a.append)
        tab_b.add_listener(seen_b.append)

        tab_a.write("k", "v")

        assert seen_a == []
        assert [e.key for e in seen_b] == ["k"]


class TestFallbackCart:
    """Tests for the in-memory fallback."""

    def test_set_get_reset(self):
        fallback = FallbackCart()
        assert not fallback

        fallback.set([1, 2])
        copy = fallback.get()
        copy.append(3)

        assert fallback.get() == [1, 2]
        assert len(fallback) == 2

        fallback.reset()
        assert not fallback


class TestRedisStorage:
    """Tests for the Upstash Redis backend."""

    def test_keys_are_prefixed(self, mock_redis_client):
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        storage.set("marketplace-cart", "[]", source="tab-a")

        assert mock_redis_client.data == {"storage:profile-1:marketplace-cart": "[]"}
        assert storage.get("marketplace-cart") == "[]"
        assert storage.keys() == ["marketplace-cart"]

    def test_changes_published_to_stream(self, mock_redis_client):
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        storage.set("k", "v", source="tab-a")

        stream, entry_id, fields = mock_redis_client.xadd.call_args.args
        assert stream == "stream:storage:profile-1"
        assert entry_id == "*"
        assert StorageEvent.from_json(fields["data"]) == StorageEvent("k", None, "v", "tab-a")

    def test_unchanged_write_not_published(self, mock_redis_client):
        storage = RedisStorage("profile-1", redis=mock_redis_client)
        storage.set("k", "v")
        storage.set("k", "v")

        assert mock_redis_client.xadd.call_count == 1

    def test_delete_publishes_removal(self, mock_redis_client):
        storage = RedisStorage("profile-1", redis=mock_redis_client)
        storage.set("k", "v")

        storage.delete("k", source="tab-a")
        storage.delete("k", source="tab-a")

        assert storage.get("k") is None
        assert mock_redis_client.xadd.call_count == 2
        last = json.loads(mock_redis_client.xadd.call_args.args[2]["data"])
        assert last["new_value"] is None

    def test_oom_maps_to_quota(self, mock_redis_client):
        """Test Redis maxmemory errors surface as quota errors."""
        mock_redis_client.set.side_effect = UpstashError("OOM command not allowed when used memory > 'maxmemory'")
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        with pytest.raises(QuotaExceededError):
            storage.set("k", "v")
        assert SafeStorage(storage).write("k", "v") is False

    def test_other_errors_unavailable(self, mock_redis_client):
        mock_redis_client.get.side_effect = UpstashError("connection reset")
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        with pytest.raises(StorageUnavailableError):
            storage.get("k")

    def test_publish_failure_does_not_fail_write(self, mock_redis_client):
        mock_redis_client.xadd.side_effect = UpstashError("stream error")
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        storage.set("k", "v")

        assert storage.get("k") == "v"

    def test_cart_over_redis(self, mock_redis_client, clock, catering_service):
        """Test the cart store runs unchanged over the Redis backend."""
        from marketcart.cart.session import open_cart_session

        backend = RedisStorage("profile-1", redis=mock_redis_client)
        session = open_cart_session(backend, tab_id="tab-a", clock=clock)
        session.gate.sign_in("user-1")

        session.store.add_item(catering_service, {"menu-1": 2})

        stored = json.loads(mock_redis_client.data["storage:profile-1:marketplace-cart"])
        assert stored[0]["selectedItems"] == {"menu-1": 2}

    def test_transport_errors_unavailable(self, mock_redis_client):
        """Test non-Upstash client failures are wrapped as storage errors."""
        mock_redis_client.set.side_effect = ConnectionError("connection reset")
        mock_redis_client.keys.side_effect = TimeoutError("timed out")
        storage = RedisStorage("profile-1", redis=mock_redis_client)

        with pytest.raises(StorageUnavailableError):
            storage.set("k", "v")
        with pytest.raises(StorageUnavailableError):
            storage.keys()

    def test_cart_survives_connection_errors(self, mock_redis_client, clock, catering_service):
        """Test a failing Redis connection degrades the cart to memory."""
        from marketcart.cart.session import open_cart_session

        backend = RedisStorage("profile-1", redis=mock_redis_client)
        session = open_cart_session(backend, tab_id="tab-a", clock=clock)
        session.gate.sign_in("user-1")
        mock_redis_client.set.side_effect = ConnectionError("connection reset")
        mock_redis_client.get.side_effect = ConnectionError("connection reset")

        session.store.add_item(catering_service, {"menu-1": 2})
        session.store.remove_item("missing")

        assert session.store.is_in_cart("svc-catering-1")
        assert [item.service_id for item in session.fallback.get()] == ["svc-catering-1"]
