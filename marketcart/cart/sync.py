"""Cross-tab cart synchronization.

When another tab of the same profile changes the persisted cart, this tab
reloads it wholesale. Last writer wins: concurrent edits are not merged.
"""
from typing import Callable, Optional

from marketcart.logging import get_logger
from marketcart.storage.events import StorageEvent
from .service import CartStore

logger = get_logger(__name__)


class CrossTabSynchronizer:
    """Reloads a CartStore whenever another tab writes its storage key."""

    def __init__(self, store: CartStore):
        self.store = store
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.storage.add_listener(self.handle_event)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle_event(self, event: StorageEvent) -> None:
        if event.key != self.store.key:
            return
        if not self.store.is_authenticated:
            return
        logger.debug("Cart changed in another tab, reloading")
        self.store.load()
