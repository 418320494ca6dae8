"""
Service routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    order_service = current_app.config.get("ORDER_SERVICE")
    if order_service:
        health_status["checks"]["orders"] = "ok"
        health_status["checks"]["order_count"] = order_service.repository.count()
    else:
        health_status["checks"]["orders"] = "not_available"
        health_status["status"] = "degraded"

    if current_app.config.get("PAYSTACK_SECRET_KEY"):
        health_status["checks"]["webhook"] = "ok"
    else:
        health_status["checks"]["webhook"] = "secret_not_configured"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
