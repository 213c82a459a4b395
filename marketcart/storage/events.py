"""Storage change events.

A change made through one tab is announced to the listeners of every other
tab of the same profile, never to the tab that made it (the same contract as
the browser ``storage`` event). LocalStorage dispatches synchronously; for
Redis, changes travel through a stream read by RedisStorageEvents.
"""

import asyncio
import json
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from marketcart.db import RedisKeys, get_redis
from marketcart.logging import get_logger

logger = get_logger(__name__)

# Polling interval for reading new stream entries (seconds).
# upstash-redis REST API does NOT support blocking xread.
POLL_INTERVAL_SECS = 1.0

# Maximum number of events to read per poll
MAX_EVENTS_PER_POLL = 50


@dataclass(frozen=True)
class StorageEvent:
    """A key changed (new_value None means it was deleted)."""
    key: str
    old_value: Optional[str]
    new_value: Optional[str]
    source: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str) -> "StorageEvent":
        parsed = json.loads(data)
        return cls(
            key=parsed["key"],
            old_value=parsed.get("old_value"),
            new_value=parsed.get("new_value"),
            source=parsed.get("source"),
        )


StorageListener = Callable[[StorageEvent], None]


class StorageEventHub:
    """Routes change events to per-tab listeners."""

    def __init__(self):
        self._listeners: list[tuple[Optional[str], StorageListener]] = []

    def add_listener(self, tab_id: Optional[str], listener: StorageListener) -> Callable[[], None]:
        """Register a listener for a tab; returns a function that removes it."""
        entry = (tab_id, listener)
        self._listeners.append(entry)

        def remove() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: StorageEvent) -> None:
        for tab_id, listener in list(self._listeners):
            # The originating tab does not hear about its own writes
            if event.source is not None and tab_id == event.source:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception(f"Storage listener failed for key {event.key}")


def _fields_to_dict(fields: Any) -> dict:
    """Stream entry fields come back either as a dict or a flat [k, v, ...] list."""
    if isinstance(fields, dict):
        return fields
    if isinstance(fields, (list, tuple)):
        return dict(zip(fields[::2], fields[1::2]))
    return {}


class RedisStorageEvents:
    """
    Feeds a StorageEventHub from a profile's Redis change stream.

    Usage:
        events = RedisStorageEvents(profile_id, storage.events)
        task = asyncio.create_task(events.run())
        ...
        events.stop()
    """

    def __init__(
        self,
        profile_id: str,
        hub: StorageEventHub,
        redis=None,
        poll_interval: float = POLL_INTERVAL_SECS,
    ):
        self.stream_key = RedisKeys.stream_key(profile_id)
        self.hub = hub
        self._redis = redis
        self.poll_interval = poll_interval
        self.last_id: Optional[str] = None
        self._stopped = False

    @property
    def redis(self):
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    async def start_from_latest(self) -> None:
        """Skip history: only changes after this point are delivered."""
        latest = await self.redis.xrevrange(self.stream_key, end="+", start="-", count=1)
        self.last_id = latest[0][0] if latest else "0"

    async def poll_once(self) -> int:
        """Read and dispatch new stream entries; returns how many were dispatched."""
        if self.last_id is None:
            await self.start_from_latest()
        entries = await self.redis.xrange(
            self.stream_key, start=f"({self.last_id}", end="+", count=MAX_EVENTS_PER_POLL
        )
        dispatched = 0
        for entry_id, fields in entries or []:
            self.last_id = entry_id
            data = _fields_to_dict(fields).get("data")
            if not isinstance(data, str):
                continue
            try:
                event = StorageEvent.from_json(data)
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.warning(f"Invalid storage event in stream {self.stream_key}: {data[:100]}")
                continue
            self.hub.dispatch(event)
            dispatched += 1
        return dispatched

    async def run(self) -> None:
        """Poll until stop() is called."""
        self._stopped = False
        while not self._stopped:
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning(f"Failed to read storage events: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self._stopped = True
