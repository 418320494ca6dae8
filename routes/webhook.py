"""
Payment webhook route.

Handles:
- POST /webhooks/paystack - Signed payment events

The signature covers the exact bytes sent, so the raw body is read with
``request.get_data()`` before any JSON decoding.
"""

from flask import Blueprint, current_app, request

from services.webhook_service import SIGNATURE_HEADER
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

webhook_bp = Blueprint("webhook", __name__)


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


@webhook_bp.route("/webhooks/paystack", methods=["POST"])
def paystack_webhook():
    """
    Verify and apply one payment event.

    401 for a missing or invalid signature and 400 for a malformed body
    are produced by the app's CartRelayError handler.
    """
    webhook_service = current_app.config["WEBHOOK_SERVICE"]

    result = webhook_service.handle(
        request.get_data(cache=True),
        request.headers.get(SIGNATURE_HEADER),
        ip_address=_client_ip(),
    )
    return result.to_dict(), 200
