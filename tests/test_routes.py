"""
Tests for the Flask routes.

Uses the app factory with TestingConfig and Flask's test client.
"""

import hashlib
import hmac
import json
import pytest

from app import create_app


SHOP = "https://shop.example.com"
SECRET = "sk_test_secret"


# Fixtures

@pytest.fixture
def app():
    return create_app("config.TestingConfig")


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def order_body():
    return {
        "items": [{"id": "blood-booster", "name": "Blood Booster", "unitPriceMinor": 2500000, "quantity": 2}],
        "totalAmount": 5000000,
        "source": f"{SHOP}/sales",
        "idempotencyKey": "attempt-1",
    }


def _signed_post(client, event, secret=SECRET):
    body = json.dumps(event).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return client.post(
        "/webhooks/paystack",
        data=body,
        content_type="application/json",
        headers={"x-paystack-signature": signature},
    )


class TestOrdersRoutes:
    """Test POST /orders and GET /orders/<id>."""

    def test_create_then_replay(self, client, order_body):
        first = client.post("/orders", json=order_body)
        second = client.post("/orders", json=order_body)

        assert first.status_code == 201
        assert first.get_json()["duplicate"] is False
        assert first.get_json()["totalAmount"] == 5000000
        assert second.status_code == 200
        assert second.get_json()["duplicate"] is True
        assert second.get_json()["order"]["id"] == first.get_json()["order"]["id"]

    def test_idempotency_header(self, client, order_body):
        del order_body["idempotencyKey"]
        headers = {"Idempotency-Key": "hdr-1"}

        first = client.post("/orders", json=order_body, headers=headers)
        second = client.post("/orders", json=order_body, headers=headers)

        assert first.get_json()["order"]["idempotencyKey"] == "hdr-1"
        assert second.status_code == 200

    def test_invalid_body(self, client):
        response = client.post("/orders", data="not json", content_type="application/json")

        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_empty_items(self, client):
        response = client.post("/orders", json={"items": []})
        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "items"}

    @pytest.mark.parametrize("path,field", [("/orders", "items"), ("/cart/snapshots", "cart")])
    def test_overflowing_number_is_rejected(self, client, path, field):
        body = '{"%s": [{"id": "a", "unitPriceMinor": 1e400, "quantity": 1}]}' % field

        response = client.post(path, data=body, content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "items"}

    def test_fractional_minor_price_is_rejected(self, client, order_body):
        order_body["items"][0]["unitPriceMinor"] = 1.5

        response = client.post("/orders", json=order_body)

        assert response.status_code == 400
        assert "whole number" in response.get_json()["error"]

    def test_get_order(self, client, order_body):
        order_id = client.post("/orders", json=order_body).get_json()["order"]["id"]

        response = client.get(f"/orders/{order_id}")

        assert response.status_code == 200
        assert response.get_json()["order"]["paymentStatus"] == "unpaid"

    def test_get_missing_order(self, client):
        response = client.get("/orders/missing")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Order not found: missing"


class TestSnapshotRoutes:
    """Test cart snapshot references."""

    def test_store_and_fetch(self, client, order_body):
        stored = client.post("/cart/snapshots", json={"cart": order_body["items"], "idempotencyKey": "a"})
        token = stored.get_json()["token"]

        fetched = client.get(f"/cart/snapshots/{token}")

        assert stored.status_code == 201
        assert fetched.status_code == 200
        assert fetched.get_json()["cart"][0]["quantity"] == 2

    def test_unknown_token(self, client):
        assert client.get("/cart/snapshots/nope").status_code == 404

    def test_invalid_cart(self, client):
        assert client.post("/cart/snapshots", json={"cart": "x"}).status_code == 400


class TestWebhookRoute:
    """Test POST /webhooks/paystack."""

    @pytest.fixture
    def charge(self):
        return {
            "event": "charge.success",
            "data": {
                "reference": "T1",
                "amount": 5000000,
                "customer": {"email": "ada@example.com"},
                "metadata": {"idempotency_key": "attempt-1"},
            },
        }

    def test_missing_signature(self, client, charge):
        response = client.post("/webhooks/paystack", json=charge)
        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid signature"

    def test_invalid_signature(self, client, charge):
        assert _signed_post(client, charge, secret="wrong").status_code == 401

    def test_invalid_json(self, client):
        body = b"{nope"
        signature = hmac.new(SECRET.encode("utf-8"), body, hashlib.sha512).hexdigest()

        response = client.post("/webhooks/paystack", data=body, headers={"x-paystack-signature": signature})

        assert response.status_code == 400

    def test_marks_pending_order_paid(self, client, order_body, charge):
        order_id = client.post("/orders", json=order_body).get_json()["order"]["id"]

        response = _signed_post(client, charge)

        assert response.status_code == 200
        assert response.get_json() == {"received": True, "message": "Order updated", "orderId": order_id}
        assert client.get(f"/orders/{order_id}").get_json()["order"]["paymentStatus"] == "paid"

    def test_redelivery(self, client, charge):
        _signed_post(client, charge)
        response = _signed_post(client, charge)
        assert response.get_json()["message"] == "Already processed"


class TestAppBehaviour:
    """Test CORS, health and error handling."""

    def test_cors_for_allowed_origin(self, client):
        response = client.get("/health", headers={"Origin": SHOP})

        assert response.headers["Access-Control-Allow-Origin"] == SHOP
        assert "Idempotency-Key" in response.headers["Access-Control-Allow-Headers"]
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_no_cors_for_other_origin(self, client):
        response = client.get("/health", headers={"Origin": "https://evil.example.net"})
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_preflight(self, client):
        response = client.options("/orders", headers={"Origin": SHOP})
        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == SHOP

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["checks"]["webhook"] == "ok"
        assert response.get_json()["checks"]["order_count"] == 0

    def test_health_degraded_without_secret(self, app, client):
        app.config["PAYSTACK_SECRET_KEY"] = ""
        assert client.get("/health").status_code == 503

    def test_unknown_route(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}

    def test_method_not_allowed(self, client):
        assert client.delete("/orders").status_code == 405
