"""
Configuration for the CartRelay server.

Client-side (storefront / checkout page) settings live in
``modules.profiles``; this module only configures the Flask application
that hosts the orders endpoint, snapshot references and the payment webhook.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

BASE_DIR = Path(__file__).resolve().parent


def _split_origins(raw: str):
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


DEFAULT_ALLOWED_ORIGINS = (
    "https://www.teneraholisticandwellness.com",
    "https://teneraholisticandwellness.com",
    "https://e84d0afb-f51a-49f1-b3e0-2d35cebef2bd.lovableproject.com",
)


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", 256 * 1024))  # 256 KB JSON bodies
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # Payment provider webhook secret (HMAC-SHA512 key)
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")

    # Origins allowed to call the API from the browser (CORS)
    ALLOWED_ORIGINS = _split_origins(
        os.environ.get("ALLOWED_ORIGINS", ",".join(DEFAULT_ALLOWED_ORIGINS))
    )

    # Server-side cart snapshots only live for one checkout session
    SNAPSHOT_TTL_SECONDS = float(os.environ.get("SNAPSHOT_TTL_SECONDS", "3600"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    PAYSTACK_SECRET_KEY = "sk_test_secret"
    ALLOWED_ORIGINS = ("https://shop.example.com",)
    SNAPSHOT_TTL_SECONDS = 3600.0
