"""
CartRelay - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration (.env + config classes)
2. Configures logging
3. Creates the order, snapshot reference and webhook services
4. Registers route blueprints
5. Sets up CORS hooks and JSON error handlers

ARCHITECTURE:
    Storefront page (CartRelay client)
    ├── POST /orders              (retried, same idempotency key)
    ├── POST /cart/snapshots      (oversized carts only)
    └── redirect -> checkout page
                    └── GET /cart/snapshots/<token>

    Payment provider
    └── POST /webhooks/paystack   (HMAC-SHA512 signed)

Every service keeps its own state behind a lock; routes reach them
through app.config.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from logging_config import setup_logging, get_logger
from core.exceptions import CartRelayError, ConfigurationError
from services.order_service import OrderRepository, OrderService, SnapshotReferenceStore
from services.webhook_service import PaymentWebhookService, SIGNATURE_HEADER
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)

CORS_ALLOWED_HEADERS = f"Content-Type, Authorization, Idempotency-Key, {SIGNATURE_HEADER}"
CORS_ALLOWED_METHODS = "GET, POST, OPTIONS"


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_app(config_object: str = "config.Config") -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the config class to load

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: PAYSTACK_SECRET_KEY missing in production
    """
    # Use override=True so .env file always takes precedence over shell environment
    env_file = _get_base_path() / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        app_name="cart_relay",
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting CartRelay in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CONFIGURATION CHECKS (FAIL-FAST)
    # =========================================================================

    if not app.config.get("PAYSTACK_SECRET_KEY"):
        if app.config.get("ENVIRONMENT") == "production":
            raise ConfigurationError("PAYSTACK_SECRET_KEY")
        logger.warning("PAYSTACK_SECRET_KEY not set: every webhook will be rejected")

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    order_repository = OrderRepository()
    snapshot_store = SnapshotReferenceStore(ttl_seconds=app.config.get("SNAPSHOT_TTL_SECONDS", 3600.0))

    app.config["ORDER_REPOSITORY"] = order_repository
    app.config["ORDER_SERVICE"] = OrderService(order_repository, snapshot_store)
    app.config["WEBHOOK_SERVICE"] = PaymentWebhookService(
        app.config.get("PAYSTACK_SECRET_KEY", ""),
        order_repository,
    )
    logger.info("Order and webhook services initialized")

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # CORS
    # =========================================================================

    allowed_origins = frozenset(app.config.get("ALLOWED_ORIGINS", ()))

    @app.before_request
    def handle_preflight():
        """Answer CORS preflight requests without reaching the routes."""
        if request.method == "OPTIONS":
            return "", 204
        return None

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and (origin in allowed_origins or "*" in allowed_origins):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Headers"] = CORS_ALLOWED_HEADERS
            response.headers["Access-Control-Allow-Methods"] = CORS_ALLOWED_METHODS
            response.headers["Vary"] = "Origin"
        elif origin:
            logger.debug(f"No CORS headers for origin {origin}")
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(CartRelayError)
    def handle_cart_relay_error(e: CartRelayError):
        if e.http_status >= 500:
            logger.error(f"{type(e).__name__}: {e}", exc_info=True)
        else:
            logger.warning(f"{request.method} {request.path} -> {e.http_status}: {e.message}")
        return e.to_dict(), e.http_status

    @app.errorhandler(RequestEntityTooLarge)
    def handle_body_too_large(e):
        max_kb = app.config.get("MAX_CONTENT_LENGTH", 256 * 1024) / 1024
        return {"error": f"Request body too large. Maximum size is {max_kb:.0f} KB."}, 413

    @app.errorhandler(404)
    def handle_not_found(e):
        return {"error": "Not found"}, 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return {"error": e.description}, e.code
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return {"error": "Internal server error"}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
