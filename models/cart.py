"""
Cart data models.

These models represent the cart as it crosses origin and navigation
boundaries during checkout: storefront page -> checkout page -> payment
provider -> thank-you page.

Immutability:
    - CartLine and CartSnapshot are frozen dataclasses
    - A new CartSnapshot is built for every propagation attempt and is
      never mutated in place, so it is safe to hand to sync threads
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.exceptions import InvalidCartLineError
from logging_config import get_logger
from modules.currency import to_minor


logger = get_logger(__name__)

MAX_SKU_LENGTH = 100
MAX_NAME_LENGTH = 255
UNKNOWN_PRODUCT_NAME = "Unknown Product"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """ISO8601 with millisecond precision and a 'Z' suffix, as browsers emit."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO8601 timestamp; returns None for anything unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_int(value: Any, field_name: str, raw: Any) -> int:
    if isinstance(value, bool):
        raise InvalidCartLineError(f"{field_name} must be a number", raw)
    if isinstance(value, float) and not value.is_integer():
        raise InvalidCartLineError(f"{field_name} must be a whole number", raw)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidCartLineError(f"{field_name} is not numeric", raw)


@dataclass(frozen=True)
class CartLine:
    """
    One product line in a cart.

    The SKU is the canonical identifier; ``id`` is kept as an alias because
    older consumers read ``id`` while newer ones read ``sku``.
    """

    sku: str
    """Canonical product identifier (also exposed as ``id``)."""

    name: str
    """Display name."""

    unit_price_minor: int
    """Unit price in minor currency units (kobo)."""

    quantity: int
    """Number of units, at least 1."""

    def __post_init__(self):
        if not isinstance(self.sku, str) or not self.sku.strip():
            raise InvalidCartLineError("missing identifier", self)
        if isinstance(self.unit_price_minor, bool) or not isinstance(self.unit_price_minor, int):
            raise InvalidCartLineError("unit price must be an integer", self)
        if self.unit_price_minor < 0:
            raise InvalidCartLineError("unit price must not be negative", self)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidCartLineError("quantity must be an integer", self)
        if self.quantity < 1:
            raise InvalidCartLineError("quantity must be at least 1", self)

    @property
    def id(self) -> str:
        return self.sku

    @property
    def line_total_minor(self) -> int:
        return self.unit_price_minor * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Wire form shared by storage, messages, URLs and the orders endpoint."""
        return {
            "id": self.sku,
            "sku": self.sku,
            "name": self.name,
            "unitPriceMinor": self.unit_price_minor,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CartLine":
        """
        Build a line from loosely-shaped input.

        Accepts both the wire form (``unitPriceMinor``) and the legacy form
        written by older storefront scripts (``price`` as a float in major
        units). ``sku`` wins over ``id`` when both are present.

        Raises:
            InvalidCartLineError: No identifier, no price, or bad numbers
        """
        if not isinstance(data, dict):
            raise InvalidCartLineError("line is not an object", data)

        identifier = data.get("sku") or data.get("id")
        if identifier is None or not str(identifier).strip():
            raise InvalidCartLineError("missing identifier", data)
        sku = str(identifier).strip()[:MAX_SKU_LENGTH]

        name = str(data.get("name") or UNKNOWN_PRODUCT_NAME).strip()[:MAX_NAME_LENGTH]

        if data.get("unitPriceMinor") is not None:
            unit_price_minor = _coerce_int(data["unitPriceMinor"], "unitPriceMinor", data)
        elif data.get("price") is not None:
            try:
                unit_price_minor = to_minor(data["price"])
            except ValueError as e:
                raise InvalidCartLineError(str(e), data)
        else:
            raise InvalidCartLineError("missing price", data)

        raw_quantity = data.get("quantity")
        if raw_quantity is None:
            raw_quantity = data.get("defaultQuantity", 1)
        quantity = _coerce_int(raw_quantity, "quantity", data)

        return cls(sku=sku, name=name, unit_price_minor=unit_price_minor, quantity=quantity)


@dataclass(frozen=True)
class CartSnapshot:
    """
    Immutable point-in-time copy of cart contents.

    Lifecycle:
        1. Built by the orchestrator (or a receiver) from the best source
        2. Propagated over every channel
        3. Discarded once the checkout flow completes
    """

    lines: Tuple[CartLine, ...] = ()
    captured_at: datetime = field(default_factory=utcnow)
    source_origin: str = ""

    def __post_init__(self):
        if not isinstance(self.lines, tuple):
            object.__setattr__(self, "lines", tuple(self.lines))

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_minor(self) -> int:
        """Derived total; never taken from client-supplied data."""
        return sum(line.line_total_minor for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_wire_lines(self) -> List[Dict[str, Any]]:
        return [line.to_dict() for line in self.lines]

    def to_json(self) -> str:
        """Serialized CartLine[] as stored under every storage key."""
        return json.dumps(self.to_wire_lines(), separators=(",", ":"))

    def fingerprint(self) -> str:
        """Content hash of the lines (timestamps excluded) for deduplication."""
        canonical = json.dumps(self.to_wire_lines(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @classmethod
    def empty(cls, source_origin: str = "") -> "CartSnapshot":
        return cls(lines=(), source_origin=source_origin)

    @classmethod
    def from_lines(
        cls,
        raw_lines: Iterable[Any],
        source_origin: str = "",
        captured_at: Optional[datetime] = None,
    ) -> "CartSnapshot":
        """
        Normalise loose line data into a snapshot.

        Invalid lines are dropped and logged rather than failing the whole
        cart: a malformed line is treated as absent data.
        """
        lines = []
        for raw in raw_lines or ():
            if isinstance(raw, CartLine):
                lines.append(raw)
                continue
            try:
                lines.append(CartLine.from_dict(raw))
            except InvalidCartLineError as e:
                logger.warning(f"Dropping cart line from {source_origin or 'unknown source'}: {e.reason}")
        return cls(
            lines=tuple(lines),
            captured_at=captured_at or utcnow(),
            source_origin=source_origin,
        )


@dataclass(frozen=True)
class OrderSummary:
    """
    Order summary carried in the redirect URL's ``orderData`` parameter.

    Mirrors the remote POST body so the receiving page can reconcile either.
    """

    items: Tuple[Dict[str, Any], ...]
    total_amount: int
    timestamp: str
    source: str
    synced: bool
    idempotency_key: str

    @classmethod
    def from_snapshot(
        cls,
        snapshot: CartSnapshot,
        synced: bool,
        idempotency_key: str,
    ) -> "OrderSummary":
        return cls(
            items=tuple(snapshot.to_wire_lines()),
            total_amount=snapshot.total_minor,
            timestamp=to_iso(snapshot.captured_at),
            source=snapshot.source_origin,
            synced=synced,
            idempotency_key=idempotency_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": list(self.items),
            "totalAmount": self.total_amount,
            "timestamp": self.timestamp,
            "source": self.source,
            "synced": self.synced,
            "idempotencyKey": self.idempotency_key,
        }
