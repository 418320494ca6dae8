"""
Unit tests for the transport orchestrator.

The orchestrator runs a real sync thread against a mocked orders client;
grace delays are shortened so the suite stays fast.
"""

import threading
import time
import pytest
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

from core.api_client import PostResult
from core.storage import MemoryStorage
from core.window import Window
from models.cart import CartLine, CartSnapshot
from modules.messenger import CrossWindowMessenger
from modules.profiles import get_profile
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore
from services.orchestrator import CheckoutState, TransportOrchestrator


SHOP = "https://shop.example.com"
CHECKOUT_URL = "https://pay.example.com/order-payment"
GRACE = 0.2


# Fixtures

@pytest.fixture
def profile():
    return get_profile("sales_page").with_overrides(
        checkout_base_url=CHECKOUT_URL,
        allowed_origins=(SHOP,),
        grace_delay_seconds=GRACE,
        retry_delay_ms=10,
    )


@pytest.fixture
def window():
    return Window(SHOP, url=f"{SHOP}/sales")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def mirror(storage, profile):
    return StorageMirror(storage, profile.canonical_storage_key, profile.legacy_storage_keys, SHOP)


@pytest.fixture
def messenger(window, profile):
    return CrossWindowMessenger(window, profile.allowed_origins, profile.frame_origin_patterns)


@pytest.fixture
def cart_store():
    return CartStore()


@pytest.fixture
def client():
    client = MagicMock()
    client.post.return_value = PostResult(ok=True, status_code=201)
    client.store_snapshot.return_value = "tok-1"
    return client


@pytest.fixture
def navigator():
    return MagicMock()


@pytest.fixture
def orchestrator(profile, window, mirror, messenger, cart_store, navigator, client):
    orchestrator = TransportOrchestrator(
        profile,
        window,
        mirror,
        messenger,
        cart_store=cart_store,
        navigator=navigator,
        client_factory=lambda: client,
        retry_sleep=lambda seconds: None,
    )
    yield orchestrator
    orchestrator.shutdown(timeout_per_thread=2.0)


@pytest.fixture
def blood_booster():
    return CartLine(sku="blood-booster", name="Blood Booster", unit_price_minor=2500000, quantity=2)


def _query(url):
    return parse_qs(urlsplit(url).query)


# Tests for collecting

class TestCollect:
    """Test cart source priority."""

    def test_explicit_lines_win(self, orchestrator, cart_store, blood_booster):
        cart_store.add(CartLine(sku="other", name="Other", unit_price_minor=1, quantity=1))
        snapshot = orchestrator.collect([blood_booster.to_dict()])
        assert snapshot.lines == (blood_booster,)

    def test_cart_store_before_storage(self, orchestrator, cart_store, mirror, blood_booster):
        mirror.write(CartSnapshot(lines=(CartLine(sku="stored", name="S", unit_price_minor=1, quantity=1),)))
        cart_store.add(blood_booster)
        assert orchestrator.collect().lines == (blood_booster,)

    def test_storage_fallback(self, orchestrator, mirror, blood_booster):
        mirror.write(CartSnapshot(lines=(blood_booster,)))
        assert orchestrator.collect().lines == (blood_booster,)

    def test_invalid_explicit_lines_fall_through(self, orchestrator, cart_store, blood_booster):
        cart_store.add(blood_booster)
        assert orchestrator.collect([{"id": "no-price"}]).lines == (blood_booster,)

    def test_nothing_anywhere(self, orchestrator):
        snapshot = orchestrator.collect()
        assert snapshot.is_empty
        assert snapshot.source_origin == SHOP


# Tests for checkout

class TestCheckout:
    """Test the checkout state machine."""

    def test_synced_checkout(self, orchestrator, navigator, client, cart_store, blood_booster):
        cart_store.add(blood_booster)

        outcome = orchestrator.checkout()

        assert outcome.synced is True
        assert outcome.state is CheckoutState.DONE
        assert outcome.transitions == [
            CheckoutState.IDLE,
            CheckoutState.COLLECTING,
            CheckoutState.PROPAGATING,
            CheckoutState.REDIRECTING,
            CheckoutState.DONE,
        ]
        navigator.assign.assert_called_once_with(outcome.redirect_url)
        params = _query(outcome.redirect_url)
        assert params["synced"] == ["true"]
        assert '"quantity":2' in params["cart"][0]

    def test_idempotency_key_is_attempt_id(self, orchestrator, client, cart_store, blood_booster):
        cart_store.add(blood_booster)

        outcome = orchestrator.checkout()

        assert client.post.call_args[0][1] == outcome.attempt_id
        assert f'"idempotencyKey":"{outcome.attempt_id}"' in _query(outcome.redirect_url)["orderData"][0]

    def test_failed_sync_still_redirects(self, orchestrator, navigator, client, cart_store, blood_booster):
        client.post.return_value = PostResult(ok=False, status_code=500, error="HTTP 500")
        cart_store.add(blood_booster)

        outcome = orchestrator.checkout()

        assert outcome.synced is False
        assert CheckoutState.FAILED in outcome.transitions
        assert outcome.transitions[-2:] == [CheckoutState.REDIRECTING, CheckoutState.DONE]
        assert _query(outcome.redirect_url)["synced"] == ["false"]
        navigator.assign.assert_called_once()

    def test_slow_sync_is_not_synced(self, orchestrator, client, cart_store, blood_booster):
        """A POST still in flight when the grace delay ends means synced=false."""
        release = threading.Event()

        def slow_post(*args, **kwargs):
            release.wait(5)
            return PostResult(ok=True, status_code=201)

        client.post.side_effect = slow_post
        cart_store.add(blood_booster)

        try:
            outcome = orchestrator.checkout()
        finally:
            release.set()

        assert outcome.synced is False
        assert outcome.state is CheckoutState.DONE

    def test_propagation_writes_storage_and_broadcasts(self, orchestrator, window, storage, cart_store, blood_booster):
        received = []
        window.add_event_listener(received.append)
        cart_store.add(blood_booster)

        orchestrator.checkout()

        assert storage.get_item("systemeCart") == CartSnapshot(lines=(blood_booster,)).to_json()
        assert {event.data["type"] for event in received} == {"CART_DATA", "ADD_TO_CART"}

    def test_grace_delay_is_not_shortened_by_success(self, profile, window, mirror, messenger, navigator, client, blood_booster):
        waits = []
        orchestrator = TransportOrchestrator(
            profile, window, mirror, messenger,
            navigator=navigator,
            client_factory=lambda: client,
            sleep=lambda seconds: (waits.append(seconds), time.sleep(0.05)),
        )

        orchestrator.checkout([blood_booster.to_dict()])
        orchestrator.shutdown()

        assert waits == [GRACE]


# Tests for the never-block invariant

class TestNeverBlock:
    """Empty or malformed carts still reach the redirect."""

    def test_empty_cart(self, orchestrator, navigator, client):
        started = time.monotonic()

        outcome = orchestrator.checkout([])

        assert time.monotonic() - started <= GRACE + 1.0
        assert outcome.state is CheckoutState.DONE
        assert outcome.transitions == [
            CheckoutState.IDLE,
            CheckoutState.COLLECTING,
            CheckoutState.REDIRECTING,
            CheckoutState.DONE,
        ]
        assert outcome.synced is False
        client.post.assert_not_called()
        navigator.assign.assert_called_once()

    def test_cart_with_malformed_line(self, orchestrator, navigator):
        started = time.monotonic()

        outcome = orchestrator.checkout([{"id": "mystery", "name": "No Price", "quantity": 1}])

        assert time.monotonic() - started <= GRACE + 1.0
        assert outcome.state is CheckoutState.DONE
        assert outcome.snapshot.is_empty
        navigator.assign.assert_called_once()

    def test_collect_crash(self, orchestrator, navigator, mirror):
        mirror.read_first_available = MagicMock(side_effect=RuntimeError("storage exploded"))

        outcome = orchestrator.checkout()

        assert outcome.state is CheckoutState.DONE
        navigator.assign.assert_called_once()

    def test_navigation_error_is_contained(self, orchestrator, navigator):
        navigator.assign.side_effect = RuntimeError("navigation blocked")
        assert orchestrator.checkout().state is CheckoutState.DONE

    def test_default_navigator_is_window_location(self, profile, window, mirror, messenger, client):
        orchestrator = TransportOrchestrator(profile, window, mirror, messenger, client_factory=lambda: client)

        outcome = orchestrator.checkout()

        assert window.location.href == outcome.redirect_url


# Tests for oversized carts

class TestOversizedCart:
    """URLs over max_url_length switch to a server reference."""

    @pytest.fixture
    def small_url_profile(self, profile):
        return profile.with_overrides(max_url_length=100)

    def _orchestrator(self, small_url_profile, window, mirror, messenger, navigator, client):
        return TransportOrchestrator(
            small_url_profile, window, mirror, messenger,
            navigator=navigator,
            client_factory=lambda: client,
        )

    def test_uses_reference_token(self, small_url_profile, window, mirror, messenger, navigator, client, blood_booster):
        orchestrator = self._orchestrator(small_url_profile, window, mirror, messenger, navigator, client)

        outcome = orchestrator.checkout([blood_booster.to_dict()])
        orchestrator.shutdown()

        assert outcome.reference_token == "tok-1"
        params = _query(outcome.redirect_url)
        assert params["cartRef"] == ["tok-1"]
        assert "cart" not in params
        client.store_snapshot.assert_called_once()

    def test_reference_failure_redirects_without_cart(self, small_url_profile, window, mirror, messenger, navigator, client, blood_booster):
        client.store_snapshot.return_value = None
        orchestrator = self._orchestrator(small_url_profile, window, mirror, messenger, navigator, client)

        outcome = orchestrator.checkout([blood_booster.to_dict()])
        orchestrator.shutdown()

        params = _query(outcome.redirect_url)
        assert outcome.reference_token is None
        assert "cart" not in params
        assert "cartRef" not in params
        navigator.assign.assert_called_once_with(outcome.redirect_url)
