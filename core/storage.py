"""
Key/value storage backends.

``Storage`` is the interface the storage mirror writes through; it has the
same shape as the browser's localStorage (string keys, string values,
``set_item`` replaces the whole value at once). ``MemoryStorage`` is the
in-process implementation used by the relay and its tests.

Atomicity:
    Each ``set_item`` replaces the value of one key in a single assignment
    under a lock, so a key holds either the previous value or the new one,
    never a partial write.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .exceptions import StorageQuotaExceededError


class Storage(ABC):
    """Minimal localStorage-like interface."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None if the key is absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete key if present."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All keys currently stored."""


class MemoryStorage(Storage):
    """
    Thread-safe in-memory storage with an optional byte quota.

    Args:
        quota_bytes: Maximum total size of all values (UTF-8). None disables
            the quota. Browsers give localStorage roughly 5 MB per origin.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self._items: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._quota_bytes = quota_bytes

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            value = str(value)
        with self._lock:
            if self._quota_bytes is not None:
                used = sum(
                    len(v.encode("utf-8")) for k, v in self._items.items() if k != key
                )
                required = used + len(value.encode("utf-8"))
                if required > self._quota_bytes:
                    raise StorageQuotaExceededError(key, required, self._quota_bytes)
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
