"""Cart package: line items, pruner, store, sync and auth gate."""
from .models import CartLineItem, OptimizedCartItem
from .pruner import prune_service_for_storage
from .service import CartStore
from .sync import CrossTabSynchronizer
from .auth import AuthGate, AuthState, SupabaseAuthBridge
from .session import CartSession, open_cart_session

__all__ = [
    "CartLineItem",
    "OptimizedCartItem",
    "prune_service_for_storage",
    "CartStore",
    "CrossTabSynchronizer",
    "AuthGate",
    "AuthState",
    "SupabaseAuthBridge",
    "CartSession",
    "open_cart_session",
]
