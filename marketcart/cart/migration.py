"""
One-time cart format migration.

Version 1 carts stored the full service object under the cart key; version 2
stores the lean projection. The migration runs once when a session starts:
detect legacy entries, rewrite them pruned, persist, then record the schema
version. Running it again is a no-op.
"""
import json
from typing import Any

from marketcart import config
from marketcart.errors import CorruptPersistedDataError
from marketcart.logging import get_logger
from marketcart.storage.adapter import SafeStorage
from .models import OptimizedCartItem
from .pruner import pruned_storage_form

logger = get_logger(__name__)


def is_legacy_entry(entry: Any) -> bool:
    """True if a persisted entry is not already in the lean shape."""
    if not isinstance(entry, dict):
        return False
    service = entry.get("service")
    if not isinstance(service, dict):
        return False
    if "expiresAt" not in entry:
        return True
    try:
        return pruned_storage_form(service) != service
    except ValueError:
        # Unprunable entries are left for the loader to reject
        return False


def migrate_cart_storage(
    storage: SafeStorage,
    key: str = config.CART_STORAGE_KEY,
    schema_key: str = config.CART_SCHEMA_KEY,
) -> bool:
    """
    Rewrite a legacy cart in the lean format.

    Returns:
        True if the persisted cart was rewritten
    """
    marker = storage.read(schema_key)
    if marker == str(config.CART_SCHEMA_VERSION):
        return False

    migrated = False
    raw = storage.read(key)
    if raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            # The loader deletes corrupt carts
            parsed = None

        if isinstance(parsed, list) and any(is_legacy_entry(entry) for entry in parsed):
            logger.info("Migrating cart to lean format...")
            lean = []
            for entry in parsed:
                try:
                    item = OptimizedCartItem.from_dict(entry, key)
                    item.service = pruned_storage_form(item.service)
                except (CorruptPersistedDataError, ValueError) as e:
                    logger.warning(f"Dropping unreadable cart entry during migration: {e}")
                    continue
                lean.append(item.to_dict())
            migrated = storage.write(key, json.dumps(lean))
            if migrated:
                logger.info(f"Migration complete: {len(lean)} cart items rewritten")
            else:
                logger.warning("Migration could not persist the lean cart")

    storage.write(schema_key, str(config.CART_SCHEMA_VERSION))
    return migrated
