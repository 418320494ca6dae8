"""
Unit tests for the orders endpoint client.

No network: every test runs against a mocked requests.Session.
"""

import logging
import pytest
import requests
from unittest.mock import MagicMock

from core.api_client import OrdersAPIClient
from models.cart import CartLine, CartSnapshot


ORDERS_URL = "https://api.example.com/orders"
SNAPSHOT_URL = "https://api.example.com/cart/snapshots"


# Fixtures

@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger("test")


@pytest.fixture
def session():
    """Create a mock requests.Session."""
    mock_session = MagicMock(spec=requests.Session)
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def client(session, logger):
    return OrdersAPIClient(ORDERS_URL, SNAPSHOT_URL, timeout_seconds=5.0, session=session, logger=logger)


@pytest.fixture
def snapshot():
    return CartSnapshot(lines=(
        CartLine(sku="blood-booster", name="Blood Booster", unit_price_minor=2500000, quantity=2),
    ))


def _response(status_code=200, body=None, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body if body is not None else {}
    return response


# Tests for OrdersAPIClient.post

class TestPost:
    """Test the orders POST."""

    def test_requires_endpoint(self):
        with pytest.raises(ValueError):
            OrdersAPIClient("")

    def test_sets_json_content_type(self, client, session):
        assert session.headers["Content-Type"] == "application/json"

    def test_successful_post(self, client, session, snapshot):
        session.request.return_value = _response(201, {"success": True})

        result = client.post(snapshot, "key-123", source="https://shop.example.com/sales")

        assert result.ok is True
        assert result.status_code == 201
        assert result.body == {"success": True}

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert (method, url) == ("POST", ORDERS_URL)
        assert kwargs["timeout"] == 5.0
        assert kwargs["headers"] == {"Idempotency-Key": "key-123"}
        assert kwargs["json"]["items"] == snapshot.to_wire_lines()
        assert kwargs["json"]["totalAmount"] == 5000000
        assert kwargs["json"]["source"] == "https://shop.example.com/sales"
        assert kwargs["json"]["idempotencyKey"] == "key-123"
        assert kwargs["json"]["timestamp"].endswith("Z")

    def test_non_2xx_is_not_ok(self, client, session, snapshot):
        session.request.return_value = _response(500)

        result = client.post(snapshot, "key", source="s")

        assert result.ok is False
        assert result.status_code == 500
        assert "500" in result.error

    def test_timeout_does_not_raise(self, client, session, snapshot):
        session.request.side_effect = requests.Timeout("slow")

        result = client.post(snapshot, "key", source="s")

        assert result.ok is False
        assert "timed out" in result.error

    def test_connection_error_does_not_raise(self, client, session, snapshot):
        session.request.side_effect = requests.ConnectionError("refused")
        assert client.post(snapshot, "key", source="s").ok is False

    def test_non_json_success_body(self, client, session, snapshot):
        session.request.return_value = _response(200, json_error=True)

        result = client.post(snapshot, "key", source="s")

        assert result.ok is True
        assert result.body == {}


# Tests for snapshot references

class TestSnapshotReferences:
    """Test store_snapshot / fetch_snapshot."""

    def test_store_returns_token(self, client, session, snapshot):
        session.request.return_value = _response(201, {"token": "tok-1"})

        assert client.store_snapshot(snapshot, "key") == "tok-1"
        assert session.request.call_args[0] == ("POST", SNAPSHOT_URL)
        assert session.request.call_args[1]["json"]["cart"] == snapshot.to_wire_lines()

    def test_store_without_token_in_response(self, client, session, snapshot):
        session.request.return_value = _response(201, {"ok": True})
        assert client.store_snapshot(snapshot, "key") is None

    def test_store_failure(self, client, session, snapshot):
        session.request.return_value = _response(503)
        assert client.store_snapshot(snapshot, "key") is None

    def test_store_without_endpoint(self, session, snapshot):
        client = OrdersAPIClient(ORDERS_URL, None, session=session)
        assert client.store_snapshot(snapshot, "key") is None
        session.request.assert_not_called()

    def test_fetch(self, client, session, snapshot):
        session.request.return_value = _response(200, {"cart": snapshot.to_wire_lines()})

        fetched = client.fetch_snapshot("tok-1")

        assert fetched.lines == snapshot.lines
        assert session.request.call_args[0] == ("GET", f"{SNAPSHOT_URL}/tok-1")

    def test_fetch_missing(self, client, session):
        session.request.return_value = _response(404)
        assert client.fetch_snapshot("gone") is None

    def test_close_closes_session(self, client, session):
        client.close()
        session.close.assert_called_once()
