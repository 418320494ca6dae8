"""
Relay wiring.

Builds every client-side component for one page from an
IntegrationProfile, replacing the per-page copies of the storefront
script with one configured object.

Usage:
    # Storefront page
    relay = CartRelay(get_profile("sales_page"), window, storage)
    relay.start()
    relay.cart.add(CartLine("blood-booster", "Blood Booster", 2500000, 2))
    outcome = relay.checkout()

    # Checkout page
    relay = CartRelay(profile, checkout_window, checkout_storage)
    relay.start_receiver()
    relay.receiver.resolve_from_url(checkout_window.location.href)
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, Optional

from core.api_client import OrdersAPIClient
from core.storage import Storage
from core.window import Window
from modules.messenger import CrossWindowMessenger
from modules.profiles import IntegrationProfile
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore, Product
from services.listener import InboundListener
from services.orchestrator import CheckoutOutcome, TransportOrchestrator
from services.receiver import CartReceiver
from logging_config import get_logger


logger = get_logger(__name__)


class CartRelay:
    """
    One page's cart relay.

    Attributes:
        profile: Settings the relay was built from
        cart: The page's CartStore
        mirror: Storage mirror over ``storage``
        messenger: Messenger bound to ``window``
        orchestrator: Runs checkout()
        listener: Storefront-side handshake responder
        receiver: Checkout-side cart receiver
    """

    def __init__(
        self,
        profile: IntegrationProfile,
        window: Window,
        storage: Storage,
        catalog: Optional[Dict[str, Product]] = None,
        navigator: Any = None,
        client_factory: Optional[Callable[[], OrdersAPIClient]] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_sleep: Callable[[float], None] = time.sleep,
    ):
        self.profile = profile
        self.window = window
        self._client_factory = client_factory or self._default_client

        self.cart = CartStore(catalog=catalog)
        self.mirror = StorageMirror(
            storage,
            profile.canonical_storage_key,
            profile.legacy_storage_keys,
            source_origin=window.origin,
        )
        self.messenger = CrossWindowMessenger(
            window,
            allowed_origins=profile.allowed_origins,
            frame_origin_patterns=profile.frame_origin_patterns,
        )
        self.orchestrator = TransportOrchestrator(
            profile,
            window,
            self.mirror,
            self.messenger,
            cart_store=self.cart,
            navigator=navigator,
            client_factory=self._client_factory,
            sleep=sleep,
            retry_sleep=retry_sleep,
        )
        self.listener = InboundListener(
            self.messenger,
            self.mirror,
            profile.source,
            cart_store=self.cart,
            redirect_url=profile.checkout_base_url,
            include_legacy_variant=profile.send_add_to_cart_variant,
        )
        self._receiver: Optional[CartReceiver] = None

        logger.info(f"Cart relay '{profile.name}' ready on {window.origin}")

    def _default_client(self) -> OrdersAPIClient:
        return OrdersAPIClient(
            self.profile.orders_endpoint,
            self.profile.snapshot_endpoint,
            timeout_seconds=self.profile.request_timeout_seconds,
        )

    @property
    def receiver(self) -> CartReceiver:
        """Checkout-side receiver, created on first use."""
        if self._receiver is None:
            self._receiver = CartReceiver(
                self.messenger,
                self.mirror,
                self.profile.source,
                cart_store=self.cart,
                client=self._client_factory(),
                handshake_attempts=self.profile.handshake_attempts,
                handshake_interval_seconds=self.profile.handshake_interval_seconds,
            )
        return self._receiver

    def start(self) -> None:
        """Storefront startup: migrate legacy storage, load it, start the listener."""
        self.mirror.migrate()
        if self.cart.is_empty:
            stored = self.mirror.read_first_available()
            if stored is not None:
                self.cart.replace(stored.lines)
                logger.info(f"Restored {len(stored.lines)} cart line(s) from storage")
        self.listener.start()

    def start_receiver(self) -> CartReceiver:
        receiver = self.receiver
        receiver.start()
        return receiver

    def checkout(self, lines: Optional[Iterable[Any]] = None) -> CheckoutOutcome:
        return self.orchestrator.checkout(lines)

    def stop(self) -> None:
        self.listener.stop()
        if self._receiver is not None:
            self._receiver.stop()
        self.orchestrator.shutdown()
