"""
Cross-window message models.

A PropagationMessage is the typed envelope exchanged between browsing
contexts (storefront page, embedded checkout app, parent windows).

Wire envelope:
    {
        "type": "CART_DATA" | "ADD_TO_CART" | ... ,
        "cart": [CartLine, ...],        # CART_DATA variant
        "payload": [CartLine, ...],     # ADD_TO_CART variant
        "redirectUrl": "https://...",
        "error": "...",                 # SYNC_ERROR only
        "timestamp": "2025-01-01T00:00:00.000Z",
        "source": "tenera-integration"
    }

``cart`` and ``payload`` are synonyms written by different generations of
the storefront scripts; decoding checks both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import UnknownMessageTypeError
from models.cart import CartSnapshot, parse_iso, to_iso, utcnow


class MessageType(Enum):
    """Recognised message types. Anything else is ignored by receivers."""

    CART_DATA = "CART_DATA"
    """Push of the current cart (``cart`` field)."""

    ADD_TO_CART = "ADD_TO_CART"
    """Same as CART_DATA in the older ``payload`` shape."""

    CART_READY = "CART_READY"
    """Handshake: the receiving app asks for the cart."""

    CART_RECEIVED = "CART_RECEIVED"
    """Informational acknowledgement; never gates retries."""

    INTEGRATION_READY = "INTEGRATION_READY"
    """The storefront integration finished initialising."""

    SYSTEME_INTEGRATION_READY = "SYSTEME_INTEGRATION_READY"
    """Legacy name of INTEGRATION_READY sent by the page-builder script."""

    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    """Payment confirmed; the cart may be cleared."""

    ORDER_PROCESSED = "ORDER_PROCESSED"
    """Order stored; the cart may be cleared."""

    SYNC_ERROR = "SYNC_ERROR"
    """The receiving side reports a sync problem (``error`` field)."""


CART_MESSAGE_TYPES = frozenset({MessageType.CART_DATA, MessageType.ADD_TO_CART})


@dataclass(frozen=True)
class PropagationMessage:
    """
    One message on the cross-window channel.

    Messages are cheap and disposable: a snapshot may be wrapped in any
    number of them (one per target and attempt).
    """

    type: MessageType
    payload: Optional[CartSnapshot] = None
    timestamp: datetime = field(default_factory=utcnow)
    source: str = ""
    redirect_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def carries_cart(self) -> bool:
        return self.type in CART_MESSAGE_TYPES and self.payload is not None

    @classmethod
    def cart_data(
        cls,
        snapshot: CartSnapshot,
        source: str,
        redirect_url: Optional[str] = None,
    ) -> "PropagationMessage":
        return cls(MessageType.CART_DATA, snapshot, source=source, redirect_url=redirect_url)

    @classmethod
    def add_to_cart(
        cls,
        snapshot: CartSnapshot,
        source: str,
        redirect_url: Optional[str] = None,
    ) -> "PropagationMessage":
        return cls(MessageType.ADD_TO_CART, snapshot, source=source, redirect_url=redirect_url)

    @classmethod
    def signal(cls, message_type: MessageType, source: str, error: Optional[str] = None) -> "PropagationMessage":
        """A message without cart content (handshakes, acks, notifications)."""
        return cls(message_type, None, source=source, error=error)

    def to_dict(self) -> Dict[str, Any]:
        """Encode to the wire envelope."""
        data: Dict[str, Any] = {
            "type": self.type.value,
            "timestamp": to_iso(self.timestamp),
            "source": self.source,
        }
        if self.payload is not None:
            key = "payload" if self.type is MessageType.ADD_TO_CART else "cart"
            data[key] = self.payload.to_wire_lines()
        if self.redirect_url:
            data["redirectUrl"] = self.redirect_url
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Any, origin: str = "") -> "PropagationMessage":
        """
        Decode a wire envelope.

        Args:
            data: The raw ``event.data`` value
            origin: Origin of the sending window, recorded on the snapshot

        Raises:
            UnknownMessageTypeError: Not a dict, or the type is unrecognised
        """
        if not isinstance(data, dict):
            raise UnknownMessageTypeError(type(data).__name__)

        raw_type = data.get("type")
        try:
            message_type = MessageType(raw_type)
        except ValueError:
            raise UnknownMessageTypeError(raw_type)

        timestamp = parse_iso(data.get("timestamp")) or utcnow()

        raw_lines = data.get("cart")
        if not isinstance(raw_lines, list):
            raw_lines = data.get("payload")

        snapshot = None
        if isinstance(raw_lines, list):
            snapshot = CartSnapshot.from_lines(raw_lines, source_origin=origin, captured_at=timestamp)

        redirect_url = data.get("redirectUrl")
        error = data.get("error")
        return cls(
            type=message_type,
            payload=snapshot,
            timestamp=timestamp,
            source=str(data.get("source") or ""),
            redirect_url=redirect_url if isinstance(redirect_url, str) else None,
            error=str(error) if error is not None else None,
        )
