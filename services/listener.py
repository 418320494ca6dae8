"""
Inbound listener on the storefront side.

Answers the receiving application's pull requests and reacts to its
notifications:

    CART_READY        -> reply CART_DATA to event.source, then broadcast
    CART_RECEIVED     -> logged and counted (never gates retries)
    PAYMENT_SUCCESS   -> clear the CartStore and every storage key
    ORDER_PROCESSED   -> same as PAYMENT_SUCCESS
    SYNC_ERROR        -> logged

The listener never creates snapshots of its own; it resolves the same
cart the orchestrator would (CartStore, then storage) at the time the
handshake arrives.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional

from core.window import MessageEvent
from models.cart import CartSnapshot
from models.message import MessageType, PropagationMessage
from modules.messenger import CrossWindowMessenger, Subscription
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore
from logging_config import get_logger


logger = get_logger(__name__)

ReadyHandler = Callable[[MessageEvent, Optional[CartSnapshot]], None]

_HANDLED_TYPES = (
    MessageType.CART_READY,
    MessageType.CART_RECEIVED,
    MessageType.PAYMENT_SUCCESS,
    MessageType.ORDER_PROCESSED,
    MessageType.SYNC_ERROR,
)


class InboundListener:
    """
    Storefront-side responder for the handshake protocol.

    Args:
        messenger: Messenger bound to the storefront window
        mirror: Storage mirror used as the fallback cart source
        source: ``source`` value put on outgoing messages
        cart_store: Live cart, consulted before storage
        redirect_url: Checkout URL advertised in CART_DATA replies
        include_legacy_variant: Also broadcast ADD_TO_CART on handshakes
    """

    def __init__(
        self,
        messenger: CrossWindowMessenger,
        mirror: StorageMirror,
        source: str,
        cart_store: Optional[CartStore] = None,
        redirect_url: Optional[str] = None,
        include_legacy_variant: bool = True,
    ):
        self._messenger = messenger
        self._mirror = mirror
        self._source = source
        self._cart_store = cart_store
        self._redirect_url = redirect_url
        self._include_legacy_variant = include_legacy_variant

        self._subscription: Optional[Subscription] = None
        self._ready_handlers: List[ReadyHandler] = []
        self._lock = threading.Lock()

        self.handshakes_answered = 0
        self.acknowledgements = 0

    @property
    def is_running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> None:
        """Subscribe to inbound messages and announce INTEGRATION_READY."""
        if self.is_running:
            return
        self._subscription = self._messenger.on_message(self._handle, types=_HANDLED_TYPES)
        self._messenger.broadcast(PropagationMessage.signal(MessageType.INTEGRATION_READY, self._source))
        logger.info("Inbound listener started")

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
            logger.info("Inbound listener stopped")

    def on_ready(self, handler: ReadyHandler) -> None:
        """Register a callback run after each CART_READY has been answered."""
        with self._lock:
            self._ready_handlers.append(handler)

    def current_snapshot(self) -> Optional[CartSnapshot]:
        """The cart a handshake would be answered with, or None."""
        origin = self._messenger.window.origin
        if self._cart_store is not None and not self._cart_store.is_empty:
            return self._cart_store.snapshot(source_origin=origin)
        return self._mirror.read_first_available()

    # =========================================================================
    # HANDLERS
    # =========================================================================

    def _handle(self, message: PropagationMessage, event: MessageEvent) -> None:
        if message.type is MessageType.CART_READY:
            self._answer_handshake(event)
        elif message.type is MessageType.CART_RECEIVED:
            self.acknowledgements += 1
            logger.info(f"Receiver at {event.origin} acknowledged the cart")
        elif message.type in (MessageType.PAYMENT_SUCCESS, MessageType.ORDER_PROCESSED):
            logger.info(f"{message.type.value} from {event.origin}, clearing cart")
            if self._cart_store is not None:
                self._cart_store.clear()
            self._mirror.clear()
        elif message.type is MessageType.SYNC_ERROR:
            logger.warning(f"Receiver at {event.origin} reported a sync error: {message.error}")

    def _answer_handshake(self, event: MessageEvent) -> None:
        snapshot = self.current_snapshot()

        if snapshot is None or snapshot.is_empty:
            logger.info(f"CART_READY from {event.origin} but there is no cart to send")
        else:
            reply = PropagationMessage.cart_data(snapshot, self._source, self._redirect_url)
            replied = self._messenger.reply(event, reply)
            delivered = self._messenger.broadcast_cart(
                snapshot,
                self._source,
                redirect_url=self._redirect_url,
                include_legacy_variant=self._include_legacy_variant,
            )
            self.handshakes_answered += 1
            logger.info(
                f"Answered CART_READY from {event.origin} "
                f"(reply={'ok' if replied else 'failed'}, broadcast={delivered})"
            )

        with self._lock:
            handlers = list(self._ready_handlers)
        for handler in handlers:
            try:
                handler(event, snapshot)
            except Exception as e:
                logger.error(f"on_ready handler failed: {e}")
