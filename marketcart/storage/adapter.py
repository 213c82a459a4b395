"""
Safe storage access for one tab.

SafeStorage never raises: writes report success as a boolean, reads return
None on failure. FallbackCart is the process-local holding area used when
the persisted write could not be completed.
"""
import uuid
from typing import Callable, Optional, Sequence, TypeVar

from marketcart.errors import CartStorageError, QuotaExceededError
from marketcart.logging import get_logger
from .backends import StorageBackend
from .events import StorageListener

logger = get_logger(__name__)

T = TypeVar("T")


class SafeStorage:
    """Quota-aware wrapper around a StorageBackend, bound to one tab."""

    def __init__(self, backend: StorageBackend, tab_id: Optional[str] = None):
        self.backend = backend
        self.tab_id = tab_id or uuid.uuid4().hex

    def write(self, key: str, value: str) -> bool:
        """Attempt the write; False on quota or backend failure."""
        try:
            self.backend.set(key, value, source=self.tab_id)
            return True
        except QuotaExceededError as e:
            logger.warning(f"Quota exceeded: {e}")
            return False
        except CartStorageError as e:
            logger.error(f"Error setting storage item {key}: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected storage error setting {key}: {e}")
            return False

    def read(self, key: str) -> Optional[str]:
        """Raw value or None. Parsing (and deleting corrupt keys) is the caller's job."""
        try:
            return self.backend.get(key)
        except CartStorageError as e:
            logger.error(f"Error reading storage item {key}: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected storage error reading {key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        try:
            self.backend.delete(key, source=self.tab_id)
            return True
        except CartStorageError as e:
            logger.error(f"Error removing storage item {key}: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected storage error removing {key}: {e}")
            return False

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        """Listen for changes made by other tabs of the same profile."""
        return self.backend.events.add_listener(self.tab_id, listener)


class FallbackCart:
    """
    In-memory fallback for when persistent storage is full.

    Lives as long as the process (one tab), is never shared with other tabs
    and is reset on sign-out and on an explicit clear.
    """

    def __init__(self):
        self._items: list = []

    def set(self, items: Sequence[T]) -> None:
        self._items = list(items)

    def get(self) -> list:
        return list(self._items)

    def reset(self) -> None:
        self._items = []

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
