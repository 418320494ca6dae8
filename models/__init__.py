"""
Data models for CartRelay.

This module contains the dataclasses shared by every channel:
- CartLine / CartSnapshot: Immutable cart state crossing origins
- OrderSummary: The ``orderData`` redirect parameter
- PropagationMessage / MessageType: Cross-window message envelope
- OrderRecord: Server-side order row

CartLine, CartSnapshot and PropagationMessage are frozen, so they can be
handed to sync threads without copying.
"""

from .cart import CartLine, CartSnapshot, OrderSummary
from .message import MessageType, PropagationMessage, CART_MESSAGE_TYPES
from .order import CustomerInfo, OrderRecord, OrderStatus, PaymentStatus

__all__ = [
    # Cart models
    "CartLine",
    "CartSnapshot",
    "OrderSummary",
    # Message models
    "MessageType",
    "PropagationMessage",
    "CART_MESSAGE_TYPES",
    # Order models
    "CustomerInfo",
    "OrderRecord",
    "OrderStatus",
    "PaymentStatus",
]
