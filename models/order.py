"""
Server-side order models.

An OrderRecord is created by the orders endpoint when a storefront posts
its cart, and is later confirmed by the payment webhook. Both paths may
run more than once for the same checkout, so records carry the keys used
to deduplicate them: the client-generated idempotency key and the
payment reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from models.cart import to_iso, utcnow


class OrderStatus(Enum):
    """
    Fulfilment status of an order.

    Lifecycle:
        PENDING -> CONFIRMED
    """

    PENDING = "pending"
    """Cart received; no payment confirmation yet."""

    CONFIRMED = "confirmed"
    """Payment confirmed by the provider webhook."""


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    PAID = "paid"


@dataclass
class CustomerInfo:
    """Customer contact details, as supplied by the payment provider."""

    name: str = ""
    email: str = ""
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CustomerInfo":
        data = data or {}
        return cls(
            name=str(data.get("name", "")),
            email=str(data.get("email", "")),
            phone=data.get("phone"),
        )


@dataclass
class OrderRecord:
    """
    A stored order.

    Mutable: the webhook updates payment fields in place under the
    repository lock. Callers outside the repository get copies.
    """

    id: str
    """Server-generated order ID (UUID)."""

    items: List[Dict[str, Any]]
    """Sanitised cart lines in wire form."""

    total_amount_minor: int
    """Total recomputed from the lines, in minor units."""

    source: str = ""
    """Page URL the cart was posted from."""

    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID

    idempotency_key: Optional[str] = None
    """Client-generated key of the checkout attempt that created this order."""

    payment_reference: Optional[str] = None
    """Sanitised payment provider reference, set by the webhook."""

    customer: CustomerInfo = field(default_factory=CustomerInfo)

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID

    def mark_paid(self, payment_reference: str, amount_minor: int) -> None:
        """Apply a verified payment confirmation."""
        self.payment_status = PaymentStatus.PAID
        self.status = OrderStatus.CONFIRMED
        self.payment_reference = payment_reference
        self.total_amount_minor = amount_minor
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dict for API responses."""
        return {
            "id": self.id,
            "items": list(self.items),
            "totalAmount": self.total_amount_minor,
            "source": self.source,
            "status": self.status.value,
            "paymentStatus": self.payment_status.value,
            "idempotencyKey": self.idempotency_key,
            "paymentReference": self.payment_reference,
            "customer": self.customer.to_dict(),
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }
