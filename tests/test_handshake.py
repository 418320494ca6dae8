"""
Tests for the storefront listener, the checkout-side receiver and the
relay that wires them together.

Windows are real in-process Window objects; only the orders client is
mocked.
"""

import time
import pytest
from unittest.mock import MagicMock
from urllib.parse import quote

from core.api_client import PostResult
from core.storage import MemoryStorage
from core.window import Window
from models.cart import CartLine, CartSnapshot
from models.message import PropagationMessage
from modules.messenger import CrossWindowMessenger
from modules.profiles import get_profile
from modules.redirect import build_redirect_url, build_reference_url
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore
from services.listener import InboundListener
from services.receiver import CartReceiver
from services.relay import CartRelay


SHOP = "https://shop.example.com"
CHECKOUT = "https://checkout.lovable.app"
CHECKOUT_URL = "https://pay.example.com/order-payment"


# Fixtures

@pytest.fixture
def snapshot():
    return CartSnapshot(lines=(
        CartLine(sku="blood-booster", name="Blood Booster", unit_price_minor=2500000, quantity=2),
        CartLine(sku="sea-moss", name="Sea Moss Gel", unit_price_minor=1800000, quantity=1),
    ))


@pytest.fixture
def shop():
    return Window(SHOP)


@pytest.fixture
def frame(shop):
    return shop.open_frame(CHECKOUT)


@pytest.fixture
def shop_storage():
    return MemoryStorage()


@pytest.fixture
def shop_mirror(shop_storage):
    return StorageMirror(shop_storage, "systemeCart", ("cart", "cartItems"), SHOP)


@pytest.fixture
def shop_cart():
    return CartStore()


@pytest.fixture
def listener(shop, shop_mirror, shop_cart):
    messenger = CrossWindowMessenger(shop, (SHOP, CHECKOUT), ("https://*.lovable.app",))
    listener = InboundListener(messenger, shop_mirror, "tenera-integration", cart_store=shop_cart)
    listener.start()
    yield listener
    listener.stop()


@pytest.fixture
def frame_storage():
    return MemoryStorage()


@pytest.fixture
def frame_mirror(frame_storage):
    return StorageMirror(frame_storage, "systemeCart", ("cart",), CHECKOUT)


@pytest.fixture
def frame_messenger(frame):
    return CrossWindowMessenger(frame, (SHOP,))


def _receiver(frame_messenger, frame_mirror, **kwargs):
    kwargs.setdefault("handshake_attempts", 0)
    return CartReceiver(frame_messenger, frame_mirror, "checkout-app", **kwargs)


def _recorder(window, message_type=None):
    received = []

    def record(event):
        if message_type is None or (isinstance(event.data, dict) and event.data.get("type") == message_type):
            received.append(event)

    window.add_event_listener(record)
    return received


# Tests for InboundListener

class TestInboundListener:
    """Test the storefront side of the handshake."""

    def test_announces_integration_ready(self, shop, shop_mirror):
        announcements = _recorder(shop, "INTEGRATION_READY")
        messenger = CrossWindowMessenger(shop, (SHOP,))

        InboundListener(messenger, shop_mirror, "tenera-integration").start()

        assert len(announcements) == 1

    def test_cart_ready_is_answered_from_storage(self, listener, shop, frame, shop_mirror, snapshot):
        """A frame asking for the cart gets CART_DATA with exactly the stored lines."""
        shop_mirror.write(snapshot)
        received = _recorder(frame)

        shop.post_message({"type": "CART_READY", "source": "checkout-app"}, SHOP, source=frame)

        assert received[0].data["type"] == "CART_DATA"
        assert received[0].data["cart"] == snapshot.to_wire_lines()
        assert listener.handshakes_answered == 1

    def test_cart_ready_also_broadcasts(self, listener, shop, frame, shop_cart, snapshot):
        shop_cart.replace(snapshot.lines)
        received = _recorder(frame)

        shop.post_message({"type": "CART_READY"}, SHOP, source=frame)

        assert [event.data["type"] for event in received] == ["CART_DATA", "CART_DATA", "ADD_TO_CART"]

    def test_cart_store_wins_over_storage(self, listener, shop, frame, shop_cart, shop_mirror, snapshot):
        shop_mirror.write(CartSnapshot(lines=(CartLine(sku="stale", name="Stale", unit_price_minor=1, quantity=1),)))
        shop_cart.replace(snapshot.lines)
        received = _recorder(frame, "CART_DATA")

        shop.post_message({"type": "CART_READY"}, SHOP, source=frame)

        assert received[0].data["cart"] == snapshot.to_wire_lines()

    def test_cart_ready_without_cart(self, listener, shop, frame):
        received = _recorder(frame)
        ready = MagicMock()
        listener.on_ready(ready)

        shop.post_message({"type": "CART_READY"}, SHOP, source=frame)

        assert received == []
        assert listener.handshakes_answered == 0
        ready.assert_called_once()
        assert ready.call_args[0][1] is None

    def test_payment_success_clears_cart(self, listener, shop, frame, shop_cart, shop_mirror, shop_storage, snapshot):
        shop_cart.replace(snapshot.lines)
        shop_mirror.write(snapshot)

        shop.post_message({"type": "PAYMENT_SUCCESS"}, SHOP, source=frame)

        assert shop_cart.is_empty
        assert shop_storage.keys() == []

    def test_order_processed_clears_cart(self, listener, shop, frame, shop_mirror, snapshot):
        shop_mirror.write(snapshot)
        shop.post_message({"type": "ORDER_PROCESSED"}, SHOP, source=frame)
        assert shop_mirror.read_first_available() is None

    def test_acknowledgements_are_counted(self, listener, shop, frame):
        shop.post_message({"type": "CART_RECEIVED"}, SHOP, source=frame)
        assert listener.acknowledgements == 1

    def test_untrusted_origin_is_ignored(self, listener, shop, shop_mirror, snapshot):
        shop_mirror.write(snapshot)
        stranger = Window("https://evil.example.net")

        shop.post_message({"type": "PAYMENT_SUCCESS"}, SHOP, source=stranger)

        assert shop_mirror.read_first_available() is not None

    def test_stop(self, listener, shop):
        listener.stop()
        assert not listener.is_running
        assert shop.listener_count == 0


# Tests for CartReceiver

class TestCartReceiver:
    """Test the checkout side."""

    def test_cart_message_is_accepted_once(self, shop, frame, frame_messenger, frame_mirror, snapshot):
        receiver = _receiver(frame_messenger, frame_mirror)
        callback = MagicMock()
        receiver.on_cart(callback)
        acks = _recorder(shop, "CART_RECEIVED")
        receiver.start()

        message = PropagationMessage.cart_data(snapshot, "tenera-integration").to_dict()
        frame.post_message(message, CHECKOUT, source=shop)
        frame.post_message(message, CHECKOUT, source=shop)
        receiver.stop()

        callback.assert_called_once()
        assert len(acks) == 1
        assert receiver.current().lines == snapshot.lines
        assert frame_mirror.read_first_available().lines == snapshot.lines

    def test_legacy_variant_is_accepted(self, shop, frame, frame_messenger, frame_mirror, snapshot):
        cart_store = CartStore()
        receiver = _receiver(frame_messenger, frame_mirror, cart_store=cart_store)
        receiver.start()

        frame.post_message(PropagationMessage.add_to_cart(snapshot, "s").to_dict(), CHECKOUT, source=shop)
        receiver.stop()

        assert receiver.has_cart
        assert cart_store.lines() == snapshot.lines

    def test_empty_cart_message_is_ignored(self, shop, frame, frame_messenger, frame_mirror):
        receiver = _receiver(frame_messenger, frame_mirror)
        receiver.start()

        frame.post_message({"type": "CART_DATA", "cart": [{"id": "no-price"}]}, CHECKOUT, source=shop)
        receiver.stop()

        assert not receiver.has_cart

    def test_current_falls_back_to_storage(self, frame_messenger, frame_mirror, snapshot):
        frame_mirror.write(snapshot)
        receiver = _receiver(frame_messenger, frame_mirror)
        assert receiver.current().lines == snapshot.lines

    def test_wait_for_cart_timeout(self, frame_messenger, frame_mirror):
        receiver = _receiver(frame_messenger, frame_mirror)
        assert receiver.wait_for_cart(timeout=0.01) is None


class TestResolveFromUrl:
    """Test the URL channel."""

    def test_cart_parameter(self, frame_messenger, frame_mirror, snapshot):
        receiver = _receiver(frame_messenger, frame_mirror)
        url = build_redirect_url(CHECKOUT_URL, snapshot, synced=True, idempotency_key="k")

        resolved = receiver.resolve_from_url(url)

        assert resolved.lines == snapshot.lines
        assert resolved.source_origin == "https://pay.example.com"
        assert frame_mirror.read_first_available().lines == snapshot.lines

    def test_order_data_items(self, frame_messenger, frame_mirror, snapshot):
        receiver = _receiver(frame_messenger, frame_mirror)
        order_data = '{"items":[{"id":"sea-moss","name":"Sea Moss Gel","unitPriceMinor":1800000,"quantity":1}]}'

        resolved = receiver.resolve_from_url(f"{CHECKOUT_URL}?orderData={quote(order_data)}")

        assert [line.sku for line in resolved.lines] == ["sea-moss"]

    def test_cart_reference(self, frame_messenger, frame_mirror, snapshot):
        client = MagicMock()
        client.fetch_snapshot.return_value = snapshot
        receiver = _receiver(frame_messenger, frame_mirror, client=client)

        resolved = receiver.resolve_from_url(build_reference_url(CHECKOUT_URL, "tok-1", synced=False))

        client.fetch_snapshot.assert_called_once_with("tok-1")
        assert resolved is snapshot

    def test_no_cart(self, frame_messenger, frame_mirror):
        receiver = _receiver(frame_messenger, frame_mirror)
        assert receiver.resolve_from_url(CHECKOUT_URL) is None
        assert not receiver.has_cart

    def test_url_then_message_is_a_duplicate(self, shop, frame, frame_messenger, frame_mirror, snapshot):
        receiver = _receiver(frame_messenger, frame_mirror)
        callback = MagicMock()
        receiver.on_cart(callback)
        receiver.start()

        receiver.resolve_from_url(build_redirect_url(CHECKOUT_URL, snapshot, synced=True, idempotency_key="k"))
        frame.post_message(PropagationMessage.cart_data(snapshot, "s").to_dict(), CHECKOUT, source=shop)
        receiver.stop()

        callback.assert_called_once()


class TestHandshake:
    """Test the CART_READY loop."""

    def test_sends_configured_number_of_handshakes(self, shop, frame_messenger, frame_mirror):
        ready = _recorder(shop, "CART_READY")
        receiver = _receiver(frame_messenger, frame_mirror, handshake_attempts=3, handshake_interval_seconds=0.01)

        receiver.start()
        deadline = time.monotonic() + 2.0
        while receiver.handshakes_sent < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        receiver.stop()

        assert receiver.handshakes_sent == 3
        assert len(ready) == 3

    def test_stop_interrupts_handshake(self, frame_messenger, frame_mirror):
        receiver = _receiver(frame_messenger, frame_mirror, handshake_attempts=5, handshake_interval_seconds=10)

        receiver.start()
        started = time.monotonic()
        receiver.stop(timeout=2.0)

        assert time.monotonic() - started < 2.0
        assert receiver.handshakes_sent <= 1

    def test_full_round_trip(self, listener, shop_cart, frame_messenger, frame_mirror, snapshot):
        """CART_READY from the frame is answered by the storefront listener."""
        shop_cart.replace(snapshot.lines)
        receiver = _receiver(frame_messenger, frame_mirror, handshake_attempts=5, handshake_interval_seconds=0.05)

        receiver.start()
        received = receiver.wait_for_cart(timeout=2.0)
        receiver.stop()

        assert received.lines == snapshot.lines
        assert receiver.handshakes_sent == 1
        assert listener.acknowledgements == 1


# Tests for CartRelay

class TestCartRelay:
    """Test the wiring."""

    @pytest.fixture
    def profile(self):
        return get_profile("sales_page").with_overrides(
            checkout_base_url=CHECKOUT_URL,
            allowed_origins=(SHOP, CHECKOUT),
            grace_delay_seconds=0.2,
        )

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.post.return_value = PostResult(ok=True, status_code=201)
        return client

    def test_start_restores_legacy_cart(self, profile, shop, shop_storage, client, snapshot):
        shop_storage.set_item("cartItems", snapshot.to_json())
        relay = CartRelay(profile, shop, shop_storage, client_factory=lambda: client)

        relay.start()

        assert relay.cart.lines() == snapshot.lines
        assert shop_storage.get_item("systemeCart") == snapshot.to_json()
        assert relay.listener.is_running
        relay.stop()

    def test_checkout(self, profile, shop, shop_storage, client, snapshot):
        navigator = MagicMock()
        relay = CartRelay(profile, shop, shop_storage, navigator=navigator, client_factory=lambda: client)
        relay.start()

        outcome = relay.checkout(snapshot.to_wire_lines())
        relay.stop()

        assert outcome.synced is True
        navigator.assign.assert_called_once_with(outcome.redirect_url)

    def test_receiver_is_lazy(self, profile, frame, frame_storage, client):
        factory = MagicMock(return_value=client)
        relay = CartRelay(profile, frame, frame_storage, client_factory=factory)

        factory.assert_not_called()
        assert relay.receiver is relay.receiver
        factory.assert_called_once()
