"""
Key/value storage backends.

Both backends share one small interface (get / set / delete / keys, plus an
``events`` hub) and report failures with the exceptions from
marketcart.errors. Nothing here swallows errors: SafeStorage does that.
"""

from typing import Optional, Protocol

from upstash_redis.errors import UpstashError

from marketcart import config
from marketcart.db import RedisKeys, get_redis_sync
from marketcart.errors import ERROR_STORAGE_UNAVAILABLE, QuotaExceededError, StorageUnavailableError
from marketcart.logging import get_logger
from .events import StorageEvent, StorageEventHub

logger = get_logger(__name__)


def entry_size(key: str, value: str) -> int:
    """Size estimate used for quota accounting (characters of key + value)."""
    return len(key) + len(value)


class StorageBackend(Protocol):
    events: StorageEventHub

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, source: Optional[str] = None) -> None: ...

    def delete(self, key: str, source: Optional[str] = None) -> None: ...

    def keys(self) -> list[str]: ...


class LocalStorage:
    """
    Persistent storage of one browser-like profile.

    Every tab of the profile shares the same instance. Writes that would
    push usage over ``quota_bytes`` raise QuotaExceededError and leave the
    previous value in place.
    """

    def __init__(self, quota_bytes: int = config.STORAGE_QUOTA_BYTES):
        self.quota_bytes = quota_bytes
        self.events = StorageEventHub()
        self._data: dict[str, str] = {}

    def used_bytes(self) -> int:
        return sum(entry_size(k, v) for k, v in self._data.items())

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str, source: Optional[str] = None) -> None:
        old = self._data.get(key)
        current = entry_size(key, old) if old is not None else 0
        size = entry_size(key, value)
        if self.used_bytes() - current + size > self.quota_bytes:
            raise QuotaExceededError(key, size)
        self._data[key] = value
        if old != value:
            self.events.dispatch(StorageEvent(key, old, value, source))

    def delete(self, key: str, source: Optional[str] = None) -> None:
        old = self._data.pop(key, None)
        if old is not None:
            self.events.dispatch(StorageEvent(key, old, None, source))

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class RedisStorage:
    """
    Profile storage in Upstash Redis.

    Keys live under ``storage:{profile_id}:``. Every change is appended to
    the profile's stream so RedisStorageEvents in other processes can
    replay it to their tabs.
    """

    def __init__(self, profile_id: str, redis=None, events: Optional[StorageEventHub] = None):
        self.profile_id = profile_id
        self.prefix = RedisKeys.profile_prefix(profile_id)
        self.stream_key = RedisKeys.stream_key(profile_id)
        self.events = events or StorageEventHub()
        self._redis = redis  # Lazy initialization

    @property
    def redis(self):
        """Get Redis client (lazy initialization)."""
        if self._redis is None:
            try:
                self._redis = get_redis_sync()
            except ValueError as e:
                raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: {e}") from e
        return self._redis

    # Any client failure (Upstash error reply, httpx transport error, ...)
    # surfaces as a CartStorageError.

    def get(self, key: str) -> Optional[str]:
        redis = self.redis
        try:
            return redis.get(self.prefix + key)
        except Exception as e:
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: failed to read {key}: {e}") from e

    def set(self, key: str, value: str, source: Optional[str] = None) -> None:
        old = self.get(key)
        redis = self.redis
        try:
            redis.set(self.prefix + key, value)
        except Exception as e:
            # Redis answers "OOM command not allowed ..." when maxmemory is hit
            if isinstance(e, UpstashError) and "OOM" in str(e):
                raise QuotaExceededError(key, entry_size(key, value)) from e
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: failed to write {key}: {e}") from e
        if old != value:
            self._publish(StorageEvent(key, old, value, source))

    def delete(self, key: str, source: Optional[str] = None) -> None:
        old = self.get(key)
        redis = self.redis
        try:
            redis.delete(self.prefix + key)
        except Exception as e:
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: failed to delete {key}: {e}") from e
        if old is not None:
            self._publish(StorageEvent(key, old, None, source))

    def keys(self) -> list[str]:
        redis = self.redis
        try:
            raw = redis.keys(f"{self.prefix}*")
        except Exception as e:
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: failed to list keys: {e}") from e
        return [key[len(self.prefix):] for key in raw or []]

    def _publish(self, event: StorageEvent) -> None:
        try:
            self.redis.xadd(self.stream_key, "*", {"data": event.to_json()})
        except Exception as e:
            logger.warning(f"Failed to publish storage change for {event.key}: {e}")
