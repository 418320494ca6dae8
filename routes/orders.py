"""
Orders routes.

Handles:
- POST /orders - Remote persistence endpoint for storefront carts
- GET /orders/<order_id> - Order status lookup

The POST is retried by storefronts with the same idempotency key, so a
replay answers 200 with the original order instead of creating another.
"""

from flask import Blueprint, current_app, request

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__)


@orders_bp.route("/orders", methods=["POST"])
def create_order():
    """
    Accept a cart POST.

    Returns:
        201 with the new order, 200 with ``duplicate: true`` on replay,
        400 for an invalid body (via the app's error handler)
    """
    order_service = current_app.config["ORDER_SERVICE"]

    payload = request.get_json(silent=True)
    order, created = order_service.intake(
        payload,
        idempotency_header=request.headers.get("Idempotency-Key"),
        referer=request.headers.get("Referer"),
    )

    body = {
        "success": True,
        "duplicate": not created,
        "order": order.to_dict(),
        "totalAmount": order.total_amount_minor,
    }
    return body, 201 if created else 200


@orders_bp.route("/orders/<order_id>", methods=["GET"])
def get_order(order_id: str):
    """Return one order; 404 via the error handler if unknown."""
    order_service = current_app.config["ORDER_SERVICE"]
    return {"order": order_service.get_order(order_id).to_dict()}
