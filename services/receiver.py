"""
Cart receiver on the checkout page.

The checkout page cannot know which channel will deliver the cart, so it
listens on all of them:

    URL        resolve_from_url(): ``cart`` / ``orderData`` parameters, or a
               ``cartRef`` token fetched from the server
    Messages   CART_DATA / ADD_TO_CART from the storefront window
    Storage    the storage mirror, via current()
    Handshake  CART_READY sent up to ``handshake_attempts`` times on a
               background thread until a cart arrives or stop() is called

Every accepted cart is written to storage and the CartStore, acknowledged
with CART_RECEIVED and passed to on_cart() callbacks. The same cart
arriving again over another channel (same fingerprint) is a no-op.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from core.api_client import OrdersAPIClient
from core.window import MessageEvent
from models.cart import CartSnapshot
from models.message import CART_MESSAGE_TYPES, MessageType, PropagationMessage
from modules.messenger import CrossWindowMessenger, Subscription
from modules.redirect import parse_redirect_url
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore
from logging_config import get_logger, set_thread_name


logger = get_logger(__name__)

CartCallback = Callable[[CartSnapshot], None]


class CartReceiver:
    """
    Collects the cart on the receiving page.

    Args:
        messenger: Messenger bound to the checkout window
        mirror: Storage mirror of the checkout page
        source: ``source`` value put on outgoing messages
        cart_store: Store replaced with every accepted cart
        client: Used to fetch ``cartRef`` snapshots (optional)
        handshake_attempts: Number of CART_READY messages to send
        handshake_interval_seconds: Pause between CART_READY messages
    """

    def __init__(
        self,
        messenger: CrossWindowMessenger,
        mirror: StorageMirror,
        source: str,
        cart_store: Optional[CartStore] = None,
        client: Optional[OrdersAPIClient] = None,
        handshake_attempts: int = 5,
        handshake_interval_seconds: float = 1.0,
    ):
        self._messenger = messenger
        self._mirror = mirror
        self._source = source
        self._cart_store = cart_store
        self._client = client
        self._handshake_attempts = handshake_attempts
        self._handshake_interval = handshake_interval_seconds

        self._snapshot: Optional[CartSnapshot] = None
        self._fingerprint: Optional[str] = None
        self._callbacks: List[CartCallback] = []
        self._lock = threading.Lock()

        self._received = threading.Event()
        self._stopped = threading.Event()
        self._wake = threading.Event()
        self._subscription: Optional[Subscription] = None
        self._handshake_thread: Optional[threading.Thread] = None

        self.handshakes_sent = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Subscribe to cart messages and start the handshake thread."""
        if self._subscription is not None:
            return
        self._stopped.clear()
        self._wake.clear()
        self._subscription = self._messenger.on_message(self._on_cart_message, types=CART_MESSAGE_TYPES)
        self._messenger.broadcast(PropagationMessage.signal(MessageType.INTEGRATION_READY, self._source))

        self._handshake_thread = threading.Thread(
            target=self._handshake_main,
            name="Handshake",
            daemon=True,
        )
        self._handshake_thread.start()
        logger.info("Cart receiver started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the handshake and unsubscribe."""
        self._stopped.set()
        self._wake.set()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._handshake_thread is not None and self._handshake_thread is not threading.current_thread():
            self._handshake_thread.join(timeout=timeout)
        self._handshake_thread = None
        logger.info("Cart receiver stopped")

    def _handshake_main(self) -> None:
        set_thread_name("Handshake")
        for attempt in range(1, self._handshake_attempts + 1):
            if self._received.is_set() or self._stopped.is_set():
                break
            self.handshakes_sent = attempt
            logger.debug(f"Sending CART_READY ({attempt}/{self._handshake_attempts})")
            self._messenger.broadcast(PropagationMessage.signal(MessageType.CART_READY, self._source))
            if self._wake.wait(self._handshake_interval):
                break

        if not self._received.is_set() and not self._stopped.is_set():
            logger.warning(f"No cart received after {self._handshake_attempts} handshake attempts")

    # =========================================================================
    # CHANNELS
    # =========================================================================

    def resolve_from_url(self, url: str) -> Optional[CartSnapshot]:
        """
        Accept a cart carried by the redirect URL.

        ``cart`` wins over ``orderData.items``; a ``cartRef`` token is only
        fetched when neither is present.

        Returns:
            The snapshot found, or None
        """
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}" if parts.netloc else "url"
        payload = parse_redirect_url(url, source_origin=origin)

        snapshot = payload.snapshot
        if (snapshot is None or snapshot.is_empty) and payload.order_data:
            items = payload.order_data.get("items")
            if isinstance(items, list):
                snapshot = CartSnapshot.from_lines(items, source_origin=origin)

        if (snapshot is None or snapshot.is_empty) and payload.reference_token and self._client is not None:
            snapshot = self._client.fetch_snapshot(payload.reference_token)

        if snapshot is None or snapshot.is_empty:
            logger.debug("No cart in URL")
            return None

        self._accept(snapshot, via="url")
        return snapshot

    def _on_cart_message(self, message: PropagationMessage, event: MessageEvent) -> None:
        snapshot = message.payload
        if snapshot is None or snapshot.is_empty:
            logger.debug(f"Ignoring {message.type.value} without usable lines from {event.origin}")
            return

        if self._accept(snapshot, via=event.origin):
            self._messenger.reply(event, PropagationMessage.signal(MessageType.CART_RECEIVED, self._source))

    def _accept(self, snapshot: CartSnapshot, via: str) -> bool:
        """
        Store a newly received cart.

        Returns:
            False if the same cart was already accepted
        """
        fingerprint = snapshot.fingerprint()
        with self._lock:
            if fingerprint == self._fingerprint:
                logger.debug(f"Duplicate cart from {via} ignored")
                return False
            self._fingerprint = fingerprint
            self._snapshot = snapshot
            callbacks = list(self._callbacks)

        logger.info(f"Cart received from {via}: {len(snapshot.lines)} line(s), total={snapshot.total_minor}")
        self._received.set()
        self._wake.set()

        self._mirror.write(snapshot)
        if self._cart_store is not None:
            self._cart_store.replace(snapshot.lines)

        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"on_cart callback failed: {e}")
        return True

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def on_cart(self, callback: CartCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    @property
    def has_cart(self) -> bool:
        return self._received.is_set()

    def current(self) -> Optional[CartSnapshot]:
        """Best known cart: the last one received, else whatever storage holds."""
        with self._lock:
            if self._snapshot is not None:
                return self._snapshot
        return self._mirror.read_first_available()

    def wait_for_cart(self, timeout: Optional[float] = None) -> Optional[CartSnapshot]:
        """Block until a cart is received (or timeout); returns current()."""
        self._received.wait(timeout)
        return self.current()
