"""
Storage mirror.

Writes the cart to several storage keys so it survives navigation and so
independently written consumer scripts, each reading its own key, all find
it. One key is canonical; the others are legacy aliases kept for backward
compatibility.

Guarantees:
    - write() never raises; each key is written (and may fail) on its own
    - every key holds either a complete CartLine[] JSON array or nothing
    - read_first_available() treats malformed data as absent
    - nothing expires; clear() is called on payment success or explicit clear
"""

from __future__ import annotations

import json
from typing import Iterable, List, Optional, Sequence

from core.exceptions import CartRelayError
from core.storage import Storage
from logging_config import get_logger
from models.cart import CartSnapshot


logger = get_logger(__name__)


class StorageMirror:
    """
    Mirrors cart snapshots across a canonical key and its aliases.

    Args:
        storage: Backend to write through
        canonical_key: Key read first and written first
        alias_keys: Legacy keys in read-priority order
        source_origin: Origin recorded on snapshots read back from storage
    """

    def __init__(
        self,
        storage: Storage,
        canonical_key: str,
        alias_keys: Sequence[str] = (),
        source_origin: str = "",
    ):
        self._storage = storage
        self._canonical_key = canonical_key
        self._alias_keys = tuple(k for k in alias_keys if k != canonical_key)
        self._source_origin = source_origin

    @property
    def keys(self) -> List[str]:
        """All mirrored keys in read-priority order."""
        return [self._canonical_key, *self._alias_keys]

    @property
    def canonical_key(self) -> str:
        return self._canonical_key

    def write(self, snapshot: CartSnapshot) -> List[str]:
        """
        Write the snapshot's lines under every key.

        The snapshot is serialized once; each key write is independent, so a
        quota error on one key does not stop the others.

        Returns:
            Keys that were written successfully
        """
        serialized = snapshot.to_json()
        written = []
        for key in self.keys:
            try:
                self._storage.set_item(key, serialized)
                written.append(key)
            except CartRelayError as e:
                logger.warning(f"Storage write failed for '{key}': {e.message}")
            except Exception as e:
                logger.error(f"Unexpected storage error writing '{key}': {e}")

        if len(written) < len(self.keys):
            logger.warning(f"Cart mirrored to {len(written)}/{len(self.keys)} storage keys")
        else:
            logger.debug(f"Cart ({len(snapshot.lines)} lines) mirrored to {len(written)} storage keys")
        return written

    def read_first_available(self, keys: Optional[Iterable[str]] = None) -> Optional[CartSnapshot]:
        """
        Return the first key's cart that parses as a non-empty array.

        Args:
            keys: Keys to try in order (defaults to the mirror's own keys)

        Returns:
            CartSnapshot, or None when no key holds a usable cart
        """
        for key in (list(keys) if keys is not None else self.keys):
            snapshot = self._read_key(key)
            if snapshot is not None:
                logger.debug(f"Cart read from storage key '{key}' ({len(snapshot.lines)} lines)")
                return snapshot
        return None

    def _read_key(self, key: str) -> Optional[CartSnapshot]:
        try:
            raw = self._storage.get_item(key)
        except Exception as e:
            logger.warning(f"Storage read failed for '{key}': {e}")
            return None

        if not raw:
            return None

        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed JSON under storage key '{key}'")
            return None

        if not isinstance(parsed, list) or not parsed:
            return None

        snapshot = CartSnapshot.from_lines(parsed, source_origin=self._source_origin)
        return None if snapshot.is_empty else snapshot

    def clear(self) -> None:
        """Remove the cart from every key."""
        for key in self.keys:
            try:
                self._storage.remove_item(key)
            except Exception as e:
                logger.warning(f"Storage clear failed for '{key}': {e}")
        logger.info("Cart cleared from all storage keys")

    def migrate(self) -> bool:
        """
        Copy the first usable alias value into the canonical key.

        Only runs when the canonical key has no usable cart.

        Returns:
            True if a value was migrated
        """
        if self._read_key(self._canonical_key) is not None:
            return False

        snapshot = self.read_first_available(self._alias_keys)
        if snapshot is None:
            return False

        try:
            self._storage.set_item(self._canonical_key, snapshot.to_json())
        except Exception as e:
            logger.warning(f"Migration to '{self._canonical_key}' failed: {e}")
            return False

        logger.info(f"Migrated legacy cart into '{self._canonical_key}'")
        return True
