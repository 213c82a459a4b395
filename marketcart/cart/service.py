"""
Cart Store - the authoritative cart of one tab.

Holds the line items in memory and mirrors every change to persistent
storage as a lean JSON snapshot. Persistence failures never reach the
caller: a failed write triggers one cleanup-and-retry, and if that fails
too the cart lives on in the FallbackCart for the rest of the session.
"""
import asyncio
import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from marketcart import config
from marketcart.booking_backup import BookingStateStore
from marketcart.errors import (
    ERROR_CLEAR_STORAGE_FAILED,
    ERROR_SIGN_IN_REQUIRED,
    ERROR_STORAGE_INCOMPLETE,
    CorruptPersistedDataError,
)
from marketcart.logging import get_logger, sanitize_id_for_logging
from marketcart.models import ServiceItem
from marketcart.notices import LogNotifier, Notifier
from marketcart.storage.adapter import FallbackCart, SafeStorage
from marketcart.storage.manager import StorageManager
from .models import CartLineItem, OptimizedCartItem, clean_selections, utcnow

logger = get_logger(__name__)

CartListener = Callable[["CartStore"], None]


class CartStore:
    """
    Shopping cart of one tab.

    Features:
    - One line item per service id; adding again merges selections
    - Fixed 4-hour expiry per line item, evaluated on every read
    - Lean persisted snapshot with cleanup-and-retry on quota errors
    - In-memory fallback when storage stays full

    Usage:
        store = CartStore(SafeStorage(LocalStorage()))
        store.start_session(user_id)
        store.add_item(service, {"menu-1": 20})
        store.update_selections(service.id, {"menu-1": 25})
        store.clear(confirmed=True)
    """

    def __init__(
        self,
        storage: SafeStorage,
        fallback: Optional[FallbackCart] = None,
        manager: Optional[StorageManager] = None,
        booking_backup: Optional[BookingStateStore] = None,
        session_storage: Optional[SafeStorage] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
        key: str = config.CART_STORAGE_KEY,
    ):
        self.storage = storage
        self.fallback = fallback if fallback is not None else FallbackCart()
        self.manager = manager
        self.booking_backup = booking_backup
        self.session_storage = session_storage
        self.notifier = notifier or LogNotifier()
        self.key = key
        self._clock = clock
        self._items: list[CartLineItem] = []
        self._user_id: Optional[str] = None
        self._listeners: list[CartListener] = []
        self._write_generation = 0
        self.last_changed = 0

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def _live(self) -> list[CartLineItem]:
        now = self._clock()
        return [item for item in self._items if not item.is_expired(now)]

    @property
    def items(self) -> list[CartLineItem]:
        """Unexpired line items, in insertion order."""
        return self._live()

    @property
    def count(self) -> int:
        return len(self._live())

    @property
    def has_started_order(self) -> bool:
        return self.count > 0

    def is_in_cart(self, service_id: str) -> bool:
        return any(item.service_id == service_id for item in self._live())

    def get_selections(self, service_id: str) -> dict[str, int]:
        for item in self._live():
            if item.service_id == service_id:
                return dict(item.selected_items)
        return {}

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------

    def add_item(
        self,
        service: Union[ServiceItem, Mapping[str, Any]],
        selections: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Add a service, or merge selections into its existing line item.

        Existing keys are overwritten by the new values, other keys survive.
        The expiry of an existing line item is not extended.
        """
        if not self.is_authenticated:
            logger.info("Cannot add to cart - user not authenticated")
            self.notifier.error(ERROR_SIGN_IN_REQUIRED)
            return

        if not isinstance(service, ServiceItem):
            try:
                service = ServiceItem.model_validate(service)
            except ValidationError as e:
                logger.warning(f"Refusing to add service without a usable id: {e.error_count()} errors")
                return

        cleaned = clean_selections(selections)
        items = self._live()
        index = self._index_of(items, service.id)

        if index is not None:
            existing = items[index]
            logger.info(f"Service already in cart, merging selections: {sanitize_id_for_logging(service.id)}")
            items[index] = replace(existing, selected_items={**existing.selected_items, **cleaned})
        else:
            items.append(CartLineItem.create(service, cleaned, now=self._clock()))
            logger.info(f"Added to cart - new cart size: {len(items)}")

        self._commit(items)

    def remove_item(self, service_id: str) -> None:
        """Remove a line item; removing an absent id does nothing."""
        items = self._live()
        remaining = [item for item in items if item.service_id != service_id]
        if len(remaining) == len(items):
            return
        logger.info(f"Removed from cart - new cart size: {len(remaining)}")
        self._commit(remaining)

    def update_selections(self, service_id: str, selections: Mapping[str, Any]) -> None:
        """
        Replace the selections of a line item.

        Equal selections (same keys, same values) leave the store untouched:
        no new line item, no write, no change notification.
        """
        items = self._live()
        index = self._index_of(items, service_id)
        if index is None:
            return

        cleaned = clean_selections(selections)
        existing = items[index]
        if cleaned == existing.selected_items:
            logger.debug("Selections unchanged, skipping update")
            return

        items[index] = replace(existing, selected_items=cleaned)
        self._commit(items)

    def clear(self, confirmed: bool = False) -> None:
        """
        Empty the cart and delete its persisted state.

        Refused unless ``confirmed`` is True, so incidental code paths
        (navigation, remounts) cannot wipe a cart by accident.
        """
        if not confirmed:
            logger.warning("Cart clear prevented - requires user confirmation")
            return

        self._items = []
        self.fallback.reset()
        self._write_generation += 1

        cleared = self.storage.delete(self.key)
        if self.booking_backup is not None:
            self.booking_backup.clear()
        if self.session_storage is not None:
            # New services should go to the regular booking flow again
            self.session_storage.delete(config.GROUP_ORDER_FLAG_KEY)
        if not cleared:
            self.notifier.error(ERROR_CLEAR_STORAGE_FAILED)

        logger.info("Cart cleared (user confirmed)")
        self._touch()

    def refresh(self) -> None:
        """Bump the change marker so observers re-read the cart."""
        self._touch()

    # ------------------------------------------------------------
    # Session lifecycle (driven by the auth gate)
    # ------------------------------------------------------------

    def start_session(self, user_id: str) -> None:
        self._user_id = user_id
        self.load()
        logger.info(f"User authenticated, loaded cart: {len(self._items)} items")

    def end_session(self) -> None:
        """Sign-out wipe: memory, fallback, persisted cart and booking backup."""
        self._user_id = None
        self._items = []
        self.fallback.reset()
        self._write_generation += 1
        self.storage.delete(self.key)
        if self.booking_backup is not None:
            self.booking_backup.clear()
        logger.info("User not authenticated, cleared cart state and storage")
        self._touch()

    def load(self) -> list[CartLineItem]:
        """Replace the in-memory cart with the persisted one (expired items dropped)."""
        self._items = self._read_persisted()
        self._touch()
        return list(self._items)

    # ------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Call ``listener(store)`` after every change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _touch(self) -> None:
        self.last_changed += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Cart listener failed")

    # ------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------

    @staticmethod
    def _index_of(items: list[CartLineItem], service_id: str) -> Optional[int]:
        return next((i for i, item in enumerate(items) if item.service_id == service_id), None)

    def _commit(self, items: list[CartLineItem]) -> None:
        self._items = items
        self._persist(items)
        self._touch()

    def _persist(self, items: list[CartLineItem]) -> bool:
        self._write_generation += 1

        if not items:
            self.fallback.reset()
            return self.storage.delete(self.key)

        try:
            payload = json.dumps([OptimizedCartItem.from_line_item(item).to_dict() for item in items])
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize cart: {e}")
            self.fallback.set(items)
            self.notifier.warning(ERROR_STORAGE_INCOMPLETE)
            return False

        if self.storage.write(self.key, payload):
            self.fallback.reset()
            return True

        logger.info("First save failed, attempting cleanup...")
        self._schedule(self._cleanup_and_retry, self._write_generation, payload, items)
        return False

    def _cleanup_and_retry(self, generation: int, payload: str, items: list[CartLineItem]) -> None:
        if generation != self._write_generation:
            # A newer write (or a clear) superseded this one
            return
        if self.manager is not None:
            self.manager.progressive_cleanup()
        if self.storage.write(self.key, payload):
            self.fallback.reset()
            return
        logger.info("Storage full, using in-memory cart")
        self.fallback.set(items)
        self.notifier.warning(ERROR_STORAGE_INCOMPLETE)

    @staticmethod
    def _schedule(callback: Callable[..., None], *args: Any) -> None:
        """Run on the event loop when there is one, otherwise right away."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback(*args)
            return
        loop.call_soon(callback, *args)

    def _read_persisted(self) -> list[CartLineItem]:
        raw = self.storage.read(self.key)
        if raw is None:
            if self.fallback:
                logger.info("Loading cart from in-memory storage")
                return self._drop_expired(self.fallback.get(), persist=False)
            return []

        try:
            parsed = json.loads(raw)
            if not isinstance(parsed, list):
                raise CorruptPersistedDataError(self.key, "cart is not a list")
            items = [OptimizedCartItem.from_dict(entry, self.key).to_line_item() for entry in parsed]
        except (json.JSONDecodeError, CorruptPersistedDataError, ValueError, OverflowError) as e:
            logger.error(f"Failed to load cart from storage: {e}")
            self.storage.delete(self.key)
            if self.fallback:
                logger.info("Using in-memory cart after storage error")
                return self._drop_expired(self.fallback.get(), persist=False)
            return []

        return self._drop_expired(items, persist=True)

    def _drop_expired(self, items: list[CartLineItem], persist: bool) -> list[CartLineItem]:
        now = self._clock()
        valid = [item for item in items if not item.is_expired(now)]
        if len(valid) < len(items):
            logger.info(f"Removed {len(items) - len(valid)} expired cart items")
            if persist:
                self._persist(valid)
        return valid
