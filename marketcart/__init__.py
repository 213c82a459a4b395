"""
marketcart - client cart store for the catering marketplace

This package contains:
- cart: line items, pruner, store, cross-tab sync, auth gate
- storage: key/value backends, safe adapter, progressive cleanup
- booking_backup: booking state backup persistence
- db: Supabase + Upstash Redis clients

Note: Imports are lazy so importing the package does not pull in the
Supabase / Redis clients.
"""

__all__ = [
    "CartStore",
    "open_cart_session",
    "LocalStorage",
    "RedisStorage",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name == "CartStore":
        from marketcart.cart.service import CartStore
        return CartStore
    elif name == "open_cart_session":
        from marketcart.cart.session import open_cart_session
        return open_cart_session
    elif name == "LocalStorage":
        from marketcart.storage.backends import LocalStorage
        return LocalStorage
    elif name == "RedisStorage":
        from marketcart.storage.backends import RedisStorage
        return RedisStorage
    raise AttributeError(f"module 'marketcart' has no attribute '{name}'")
