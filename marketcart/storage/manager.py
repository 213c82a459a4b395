"""
Storage Manager - quota monitoring and progressive cleanup.

Frees space by evicting *other* cache namespaces, least useful first.
The cart, its schema marker, the booking backup and session keys are never
touched.
"""

import asyncio
import json
import math
import re
import time
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Callable, Optional

from marketcart import config
from marketcart.errors import CartStorageError
from marketcart.logging import get_logger
from .adapter import SafeStorage
from .backends import entry_size

logger = get_logger(__name__)

# Keys that are never cleaned up automatically
ESSENTIAL_KEYS = frozenset({
    config.CART_STORAGE_KEY,
    config.CART_SCHEMA_KEY,
    config.BOOKING_STATE_KEY,
    "vendor_application_draft_v1",
    "admin_visited_routes",
    "supabase-auth",
    "currentDraftId",
})

# Cache keys that can be cleaned up when quota is reached
CACHE_KEY_PATTERNS = (
    "cache_",
    "image_",
    "lovable-uploads/",
    "uploaded_image_",
    "cached_image",
    "service_image_",
)

IMAGE_KEY_PATTERNS = ("service_image_", "lovable-uploads/")
LEGACY_KEYS = ("old_marketplace_cart", "legacy_services", "temp_data", "dev_cache")

MAX_RECENT_IMAGES = 15
DRAFT_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000
BOOKING_BACKUP_MAX_AGE_MS = 24 * 60 * 60 * 1000

_TIMESTAMP_RE = re.compile(r"(\d{13})")


@dataclass
class QuotaInfo:
    used: int
    available: int
    total: int
    percentage: float


@dataclass
class CleanupResult:
    removed_items: int = 0
    freed_space: int = 0
    errors: list[str] = field(default_factory=list)


def format_bytes(size: int) -> str:
    """Human readable size, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024 ** i), 2)
    return f"{value:g} {units[i]}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class StorageManager:
    """
    Quota accounting and cleanup over one profile's storage.

    Usage:
        manager = StorageManager(SafeStorage(LocalStorage()))
        manager.initialize()
        result = manager.progressive_cleanup()
    """

    def __init__(
        self,
        storage: SafeStorage,
        quota_bytes: int = config.STORAGE_QUOTA_BYTES,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.storage = storage
        self.quota_bytes = quota_bytes
        self._clock_ms = clock_ms

    def _keys(self) -> list[str]:
        try:
            return self.storage.backend.keys()
        except CartStorageError as e:
            logger.error(f"Failed to list storage keys: {e}")
            return []

    def get_quota_info(self) -> QuotaInfo:
        used = 0
        for key in self._keys():
            value = self.storage.read(key)
            if value:
                used += entry_size(key, value)
        available = self.quota_bytes - used
        percentage = (used / self.quota_bytes) * 100 if self.quota_bytes else 100.0
        return QuotaInfo(used=used, available=available, total=self.quota_bytes, percentage=percentage)

    def has_space_for(self, data_size: int) -> bool:
        return self.get_quota_info().available > data_size

    # ------------------------------------------------------------
    # Cleanup phases
    # ------------------------------------------------------------

    @staticmethod
    def _is_cache_key(key: str) -> bool:
        return any(pattern in key for pattern in CACHE_KEY_PATTERNS)

    def _is_expired_cache_entry(self, key: str, value: str) -> bool:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            # Unparsable cache_ blobs carry no timestamp, treat as stale
            return "cache_" in key
        if isinstance(parsed, dict) and parsed.get("timestamp") and parsed.get("ttl"):
            return self._clock_ms() > parsed["timestamp"] + parsed["ttl"]
        return False

    def _expired_cache_keys(self, keys: list[str], result: CleanupResult) -> list[str]:
        expired = []
        for key in keys:
            if not self._is_cache_key(key):
                continue
            value = self.storage.read(key)
            try:
                if value and self._is_expired_cache_entry(key, value):
                    expired.append(key)
            except (TypeError, ValueError) as e:
                result.errors.append(f"Error processing cache key {key}: {e}")
        return expired

    @staticmethod
    def _old_image_keys(keys: list[str]) -> list[str]:
        """Everything but the MAX_RECENT_IMAGES newest image keys."""
        image_keys = [k for k in keys if any(p in k for p in IMAGE_KEY_PATTERNS)]

        def stamp(key: str) -> int:
            match = _TIMESTAMP_RE.search(key)
            return int(match.group(1)) if match else 0

        ordered = sorted(image_keys, key=stamp, reverse=True)
        return ordered[MAX_RECENT_IMAGES:]

    def _aged_json_keys(
        self,
        keys: list[str],
        prefix: str,
        field_name: str,
        max_age_ms: int,
        result: CleanupResult,
    ) -> list[str]:
        """Keys with ``prefix`` whose JSON ``field_name`` timestamp is older than max_age_ms."""
        cutoff = self._clock_ms() - max_age_ms
        aged = []
        for key in keys:
            if not key.startswith(prefix):
                continue
            value = self.storage.read(key)
            if not value:
                continue
            try:
                stamp = json.loads(value).get(field_name)
                if isinstance(stamp, str):
                    stamp = _iso_to_ms(stamp)
                if stamp and stamp < cutoff:
                    aged.append(key)
            except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                result.errors.append(f"Error processing {key}: {e}")
        return aged

    def progressive_cleanup(self) -> CleanupResult:
        """
        Remove least important data first.

        Phases:
        1. Expired cache entries
        2. Image uploads beyond the 15 most recent
        3. Draft orders older than 7 days
        4. Booking state backups older than 24 hours
        5. Legacy keys
        """
        result = CleanupResult()
        keys = [k for k in self._keys() if k not in ESSENTIAL_KEYS]

        to_remove: list[str] = []
        to_remove += self._expired_cache_keys(keys, result)
        to_remove += self._old_image_keys(keys)
        to_remove += self._aged_json_keys(keys, "draft_order_", "created_at", DRAFT_MAX_AGE_MS, result)
        to_remove += self._aged_json_keys(
            keys, "booking_state_backup_", "timestamp", BOOKING_BACKUP_MAX_AGE_MS, result
        )
        to_remove += [k for k in LEGACY_KEYS if k in keys]

        for key in dict.fromkeys(to_remove):
            value = self.storage.read(key)
            if self.storage.delete(key):
                result.removed_items += 1
                result.freed_space += entry_size(key, value) if value else len(key)
            else:
                result.errors.append(f"Error removing key {key}")

        logger.info(
            f"Storage cleanup completed: removed {result.removed_items} items, "
            f"freed {format_bytes(result.freed_space)}"
        )
        return result

    def initialize(self) -> QuotaInfo:
        """Log usage on startup and clean up when above the startup threshold."""
        quota = self.get_quota_info()
        logger.info(
            f"Storage status: {format_bytes(quota.used)}/{format_bytes(quota.total)} "
            f"({quota.percentage:.1f}%)"
        )
        if quota.percentage > config.STORAGE_CLEANUP_THRESHOLD:
            logger.info(f"Storage above {config.STORAGE_CLEANUP_THRESHOLD}%, running cleanup...")
            self.progressive_cleanup()
        return quota

    async def run_periodic_cleanup(
        self,
        interval: float = config.STORAGE_CLEANUP_INTERVAL_SECS,
        threshold: float = config.STORAGE_PERIODIC_THRESHOLD,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Check usage every ``interval`` seconds until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            if self.get_quota_info().percentage > threshold:
                self.progressive_cleanup()


def _iso_to_ms(value: str) -> int:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
