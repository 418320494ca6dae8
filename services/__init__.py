"""
Services layer for CartRelay.

Client side (one set per page, wired by CartRelay):
- CartStore: The page's live cart
- RetryController: Propagation attempts with backoff
- TransportOrchestrator: The checkout action (sync thread + grace delay + redirect)
- InboundListener: Storefront-side handshake responder
- CartReceiver: Checkout-side cart collection

Server side (created by the app factory):
- OrderService: Order intake and snapshot references
- PaymentWebhookService: Signed payment events

Thread Model:
    Caller thread (checkout action, grace delay, redirect)
    ├── Sync threads (one per checkout attempt, own API client)
    └── Handshake thread (checkout page, CART_READY loop)
"""

from .cart_store import CartStore, Product
from .retry import RetryController
from .orchestrator import CheckoutOutcome, CheckoutState, TransportOrchestrator
from .listener import InboundListener
from .receiver import CartReceiver
from .relay import CartRelay
from .order_service import OrderRepository, OrderService, SnapshotReferenceStore
from .webhook_service import PaymentWebhookService, WebhookResult

__all__ = [
    "CartStore",
    "Product",
    "RetryController",
    "CheckoutOutcome",
    "CheckoutState",
    "TransportOrchestrator",
    "InboundListener",
    "CartReceiver",
    "CartRelay",
    "OrderRepository",
    "OrderService",
    "SnapshotReferenceStore",
    "PaymentWebhookService",
    "WebhookResult",
]
