"""
Booking State Backup - persistence of an in-progress booking form.

The backup is owned by the booking flow; the cart only needs ``clear`` (the
cart store deletes the backup whenever the cart is cleared or the session
ends). Save and load are kept here so both sides share one format.
"""

import hashlib
import json
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from marketcart import config
from marketcart.logging import get_logger, sanitize_string_for_logging
from marketcart.storage.adapter import SafeStorage
from marketcart.storage.manager import StorageManager

logger = get_logger(__name__)

BACKUP_VERSION = 1
STATE_EXPIRY_MS = int(config.BOOKING_STATE_TTL_HOURS * 60 * 60 * 1000)


class BookingStateBackup(BaseModel):
    """Persisted booking state."""
    selectedServices: list[Any]
    selectedItems: dict[str, float]
    formData: Any = None
    timestamp: int
    version: Optional[int] = None
    checksum: Optional[str] = None


def compute_checksum(selected_services: list, selected_items: dict, form_data: Any) -> str:
    """Short integrity fingerprint of the payload."""
    payload = json.dumps(
        {"selectedServices": selected_services, "selectedItems": selected_items, "formData": form_data},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:10]


def _now_ms() -> int:
    return int(time.time() * 1000)


class BookingStateStore:
    """
    Save / load / clear the booking backup.

    Usage:
        backups = BookingStateStore(storage, manager)
        backups.save(services, selections, form_data)
        state = backups.load()
        backups.clear()
    """

    def __init__(
        self,
        storage: SafeStorage,
        manager: Optional[StorageManager] = None,
        key: str = config.BOOKING_STATE_KEY,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.storage = storage
        self.manager = manager
        self.key = key
        self._clock_ms = clock_ms

    def save(self, selected_services: list, selected_items: dict, form_data: Any) -> bool:
        """
        Persist the booking state.

        Malformed ``service_details`` placeholders are cleared, services are
        marked as coming from a backup. On a failed write the storage is
        cleaned up and the write retried once.

        Returns:
            True if the backup is stored
        """
        services = []
        for service in selected_services:
            service = dict(service)
            details = service.get("service_details")
            if isinstance(details, dict) and details.get("_type") == "undefined" and details.get("value") == "undefined":
                name = sanitize_string_for_logging(service.get("name"))
                logger.warning(f"Cleaning malformed service_details for {name}")
                service["service_details"] = None
            service["_fromBackup"] = True
            services.append(service)

        try:
            backup = BookingStateBackup(
                selectedServices=services,
                selectedItems=selected_items,
                formData=form_data,
                timestamp=self._clock_ms(),
                version=BACKUP_VERSION,
            )
            # Fingerprint what load() will see after the JSON round trip
            backup = BookingStateBackup.model_validate_json(backup.model_dump_json())
        except ValidationError as e:
            logger.warning(f"Booking state backup failed validation: {e.error_count()} errors")
            return False

        backup.checksum = compute_checksum(backup.selectedServices, backup.selectedItems, backup.formData)
        serialized = backup.model_dump_json()
        if self.storage.write(self.key, serialized):
            return True
        if self.manager is not None:
            self.manager.progressive_cleanup()
        if self.storage.write(self.key, serialized):
            return True
        logger.warning("Booking state backup not saved: storage quota exceeded")
        return False

    def load(self) -> Optional[BookingStateBackup]:
        """
        Load the backup, or None when absent, expired, tampered or invalid.

        Backups without a version are migrated in place.
        """
        saved = self.storage.read(self.key)
        if not saved:
            return None

        try:
            parsed = json.loads(saved)
            if not isinstance(parsed, dict):
                raise ValueError("backup is not an object")

            if not parsed.get("version"):
                parsed["version"] = BACKUP_VERSION
                backup = BookingStateBackup.model_validate(parsed)
                backup.checksum = compute_checksum(backup.selectedServices, backup.selectedItems, backup.formData)
                self.storage.write(self.key, backup.model_dump_json())
                logger.info("Migrated legacy booking state backup")
                return backup

            backup = BookingStateBackup.model_validate(parsed)
        except (json.JSONDecodeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning(f"Invalid booking state backup, removing: {e}")
            self.storage.delete(self.key)
            return None

        expected = compute_checksum(backup.selectedServices, backup.selectedItems, backup.formData)
        if backup.checksum and backup.checksum != expected:
            logger.warning("Booking state backup checksum mismatch, removing")
            self.storage.delete(self.key)
            return None

        if self._clock_ms() - backup.timestamp > STATE_EXPIRY_MS:
            logger.info("Booking state backup expired, removing")
            self.storage.delete(self.key)
            return None

        return backup

    def clear(self) -> None:
        if self.storage.delete(self.key):
            logger.info("Cleared booking state backup")


def merge_selected_items(existing: Any, backup: Any) -> dict:
    """
    Merge backed-up selections with current ones; current values win.

    Negative or non-numeric quantities are dropped from the result.
    """
    if not isinstance(existing, dict) or not isinstance(backup, dict):
        logger.warning("Invalid data types for selection merge, using current selections")
        return existing if isinstance(existing, dict) else {}

    merged = {**backup, **existing}
    return {
        key: value
        for key, value in merged.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0
    }
