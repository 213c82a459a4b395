"""Storage package: backends, change events, safe adapter and cleanup."""
from .backends import LocalStorage, RedisStorage, StorageBackend
from .events import RedisStorageEvents, StorageEvent, StorageEventHub
from .adapter import FallbackCart, SafeStorage
from .manager import CleanupResult, QuotaInfo, StorageManager

__all__ = [
    "LocalStorage",
    "RedisStorage",
    "StorageBackend",
    "RedisStorageEvents",
    "StorageEvent",
    "StorageEventHub",
    "FallbackCart",
    "SafeStorage",
    "CleanupResult",
    "QuotaInfo",
    "StorageManager",
]
