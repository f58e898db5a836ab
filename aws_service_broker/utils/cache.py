"""Thread-safe key/value caches for the service catalog."""

import threading
from typing import Dict, Generic, Optional, Tuple, TypeVar

V = TypeVar('V')

LISTINGS_KEY = "__LISTINGS__"


class Cache(Generic[V]):
    """Unbounded key/value store shared between request handlers and the catalog refresh.

    Entries live until overwritten. The lock is held only for a single get or set.
    """

    def __init__(self, name: str = "cache"):
        self.name = name
        self._entries: Dict[str, V] = {}
        self.lock = threading.RLock()

    def get(self, key: str) -> Tuple[Optional[V], bool]:
        """Return ``(value, found)`` for ``key``."""
        with self.lock:
            if key in self._entries:
                return self._entries[key], True
            return None, False

    def set(self, key: str, value: V) -> None:
        with self.lock:
            self._entries[key] = value

    def replace(self, key: str, expected: Optional[V], value: V) -> bool:
        """Set ``key`` to ``value`` only if it still holds ``expected`` (by identity)."""
        with self.lock:
            if self._entries.get(key) is not expected:
                return False
            self._entries[key] = value
            return True
