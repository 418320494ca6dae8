"""
Cart snapshot reference routes.

Handles:
- POST /cart/snapshots - Store a cart too large for the redirect URL
- GET /cart/snapshots/<token> - Fetch it back on the checkout page

References expire after SNAPSHOT_TTL_SECONDS (one checkout session).
"""

from flask import Blueprint, current_app, request

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

cart_bp = Blueprint("cart", __name__)


@cart_bp.route("/cart/snapshots", methods=["POST"])
def store_snapshot():
    order_service = current_app.config["ORDER_SERVICE"]
    token = order_service.store_snapshot(request.get_json(silent=True))
    return {"token": token}, 201


@cart_bp.route("/cart/snapshots/<token>", methods=["GET"])
def fetch_snapshot(token: str):
    order_service = current_app.config["ORDER_SERVICE"]
    return {"cart": order_service.fetch_snapshot(token)}
