"""
In-memory cart store.

The single owner of the live cart on a page. Components that need the cart
get the store passed to them explicitly; nothing reads a global.

Thread Safety:
    - All mutations happen under a threading.Lock
    - Readers get immutable CartLine tuples or CartSnapshots, never the
      internal dict
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from models.cart import CartLine, CartSnapshot
from logging_config import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Product:
    """A catalogue entry that can be added to the cart by product ID."""

    sku: str
    name: str
    unit_price_minor: int

    def to_line(self, quantity: int = 1) -> CartLine:
        return CartLine(sku=self.sku, name=self.name, unit_price_minor=self.unit_price_minor, quantity=quantity)


class CartStore:
    """
    Mutable cart keyed by SKU, preserving insertion order.

    Args:
        catalog: Product ID -> Product, used by add_product()
        lines: Initial contents
    """

    def __init__(
        self,
        catalog: Optional[Dict[str, Product]] = None,
        lines: Iterable[CartLine] = (),
    ):
        self._catalog = dict(catalog or {})
        self._lines: "OrderedDict[str, CartLine]" = OrderedDict()
        self._lock = threading.Lock()
        for line in lines:
            self._merge(line)

    def _merge(self, line: CartLine) -> CartLine:
        existing = self._lines.get(line.sku)
        if existing is not None:
            line = CartLine(
                sku=existing.sku,
                name=existing.name,
                unit_price_minor=existing.unit_price_minor,
                quantity=existing.quantity + line.quantity,
            )
        self._lines[line.sku] = line
        return line

    def add(self, line: CartLine) -> CartLine:
        """Add a line, merging quantities when the SKU is already present."""
        with self._lock:
            merged = self._merge(line)
        logger.debug(f"Cart: {merged.sku} x{merged.quantity}")
        return merged

    def add_product(self, product_id: str, quantity: int = 1) -> Optional[CartLine]:
        """
        Add a catalogue product.

        Returns:
            The resulting line, or None if the product ID is unknown
        """
        product = self._catalog.get(product_id)
        if product is None:
            logger.warning(f"Product not found in catalogue: {product_id}")
            return None
        return self.add(product.to_line(quantity))

    def set_quantity(self, sku: str, quantity: int) -> bool:
        """Set a line's quantity; zero or less removes the line."""
        with self._lock:
            existing = self._lines.get(sku)
            if existing is None:
                return False
            if quantity <= 0:
                del self._lines[sku]
            else:
                self._lines[sku] = CartLine(
                    sku=existing.sku,
                    name=existing.name,
                    unit_price_minor=existing.unit_price_minor,
                    quantity=quantity,
                )
            return True

    def remove(self, sku: str) -> bool:
        with self._lock:
            return self._lines.pop(sku, None) is not None

    def replace(self, lines: Iterable[CartLine]) -> None:
        """Replace the whole cart (e.g. with a cart received from another page)."""
        with self._lock:
            self._lines.clear()
            for line in lines:
                self._merge(line)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
        logger.info("Cart cleared")

    def lines(self) -> Tuple[CartLine, ...]:
        with self._lock:
            return tuple(self._lines.values())

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return not self._lines

    def count(self) -> int:
        """Total number of units across all lines."""
        return sum(line.quantity for line in self.lines())

    def total_minor(self) -> int:
        return sum(line.line_total_minor for line in self.lines())

    def snapshot(self, source_origin: str = "") -> CartSnapshot:
        """Immutable copy of the current contents."""
        return CartSnapshot(lines=self.lines(), source_origin=source_origin)
