"""
Common Error Constants and storage exceptions.

Message constants are shared by the cart store and the notifier so user
facing wording lives in one place. The exceptions never cross the public
CartStore boundary: SafeStorage turns them into boolean results.
"""

# User-facing notices
ERROR_SIGN_IN_REQUIRED = "Please sign in to add items to cart"
ERROR_STORAGE_INCOMPLETE = "Failed to save complete cart, some items may not survive a reload"
ERROR_CLEAR_STORAGE_FAILED = "Failed to clear cart storage completely."

# Backend errors
ERROR_QUOTA_EXCEEDED = "Storage quota exceeded"
ERROR_STORAGE_UNAVAILABLE = "Storage backend unavailable"
ERROR_CORRUPT_DATA = "Persisted data is corrupted"


class CartStorageError(Exception):
    """Base class for persistence failures."""


class QuotaExceededError(CartStorageError):
    """The backend rejected a write because it is out of space."""

    def __init__(self, key: str, size: int | None = None):
        self.key = key
        self.size = size
        detail = f" ({size} bytes)" if size is not None else ""
        super().__init__(f"{ERROR_QUOTA_EXCEEDED} writing {key}{detail}")


class StorageUnavailableError(CartStorageError):
    """Any other backend failure (network, permissions, closed client)."""


class CorruptPersistedDataError(CartStorageError):
    """A persisted value could not be parsed back into its model."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"{ERROR_CORRUPT_DATA}: {key}: {reason}")
