"""
Flask route blueprints for CartRelay.

This module contains all route handlers organized by functionality:
- orders: Remote persistence endpoint and order status lookup
- cart: Server-side cart snapshot references
- webhook: Signed payment provider webhook
- api: Health check

Each blueprint is registered with the Flask app in create_app().
"""

from .orders import orders_bp
from .cart import cart_bp
from .webhook import webhook_bp
from .api import api_bp

__all__ = [
    "orders_bp",
    "cart_bp",
    "webhook_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(orders_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(api_bp)
