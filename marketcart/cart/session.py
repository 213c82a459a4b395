"""Wiring for one tab: storage adapter, fallback, cleanup, store, sync and gate."""
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, Optional

from marketcart import config
from marketcart.booking_backup import BookingStateStore
from marketcart.notices import Notifier
from marketcart.storage.adapter import FallbackCart, SafeStorage
from marketcart.storage.backends import LocalStorage, StorageBackend
from marketcart.storage.manager import StorageManager
from .auth import AuthGate
from .migration import migrate_cart_storage
from .models import utcnow
from .service import CartStore
from .sync import CrossTabSynchronizer


@dataclass
class CartSession:
    storage: SafeStorage
    fallback: FallbackCart
    manager: StorageManager
    booking_backup: BookingStateStore
    store: CartStore
    synchronizer: CrossTabSynchronizer
    gate: AuthGate

    def close(self) -> None:
        self.synchronizer.stop()


def open_cart_session(
    backend: StorageBackend,
    tab_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utcnow,
    quota_bytes: int = config.STORAGE_QUOTA_BYTES,
) -> CartSession:
    """
    Build the cart stack of one tab over a profile's storage backend.

    The fallback cart is created here and owned by the session; the gate
    resets it on sign-out. Storage usage is checked (and cleaned up above
    the startup threshold) before the cart is first loaded.
    """
    storage = SafeStorage(backend, tab_id=tab_id)
    fallback = FallbackCart()
    manager = StorageManager(storage, quota_bytes=quota_bytes)
    manager.initialize()
    booking_backup = BookingStateStore(storage, manager)
    store = CartStore(
        storage,
        fallback=fallback,
        manager=manager,
        booking_backup=booking_backup,
        session_storage=SafeStorage(LocalStorage()),
        notifier=notifier,
        clock=clock,
    )
    synchronizer = CrossTabSynchronizer(store)
    gate = AuthGate(store, synchronizer, migrate=partial(migrate_cart_storage, storage))
    return CartSession(
        storage=storage,
        fallback=fallback,
        manager=manager,
        booking_backup=booking_backup,
        store=store,
        synchronizer=synchronizer,
        gate=gate,
    )
