"""
Integration profiles.

The storefront used to ship one near-identical script per landing page,
each hard-coding its own storage keys, target origins and endpoints. A
profile captures those differences as data so a single relay
implementation serves every page.

Named profiles:
    sales_page    - sales page embedding the checkout app
    systeme       - page-builder funnel pages (CART_DATA only, retries)
    landing_page  - direct landing page integration
    website       - the main storefront website

Usage:
    profile = get_profile("sales_page")
    profile = profile.with_overrides(grace_delay_seconds=0.5)

    # Or from CART_RELAY_* environment variables
    profile = profile_from_env()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


CANONICAL_STORAGE_KEY = "systemeCart"

# Read priority after the canonical key
LEGACY_STORAGE_KEYS = ("cart", "teneraCart", "cartItems", "pendingOrderData")

CHECKOUT_BASE_URL = "https://www.teneraholisticandwellness.com/order-payment"
ORDERS_ENDPOINT = "https://xjfkeblnxyjhxukqurvc.functions.supabase.co/orders"
SNAPSHOT_ENDPOINT = "https://xjfkeblnxyjhxukqurvc.functions.supabase.co/cart/snapshots"

STOREFRONT_ORIGINS = (
    "https://www.teneraholisticandwellness.com",
    "https://teneraholisticandwellness.com",
)
CHECKOUT_APP_ORIGINS = (
    "https://e84d0afb-f51a-49f1-b3e0-2d35cebef2bd.lovableproject.com",
    "https://holistic-payment-hub.lovable.app",
)
CHECKOUT_FRAME_PATTERNS = (
    "https://*.lovableproject.com",
    "https://*.lovable.app",
    "https://*teneraholisticandwellness.com",
)


@dataclass(frozen=True)
class IntegrationProfile:
    """
    Everything that differs between storefront integrations.

    All durations are in seconds except ``retry_delay_ms``, which keeps the
    millisecond unit of the retry contract.
    """

    name: str
    source: str
    """Value of the ``source`` field in messages and POST bodies."""

    checkout_base_url: str
    orders_endpoint: str
    snapshot_endpoint: Optional[str] = SNAPSHOT_ENDPOINT

    canonical_storage_key: str = CANONICAL_STORAGE_KEY
    legacy_storage_keys: Tuple[str, ...] = LEGACY_STORAGE_KEYS

    allowed_origins: Tuple[str, ...] = STOREFRONT_ORIGINS + CHECKOUT_APP_ORIGINS
    """Exact origins we post to and accept messages from."""

    frame_origin_patterns: Tuple[str, ...] = CHECKOUT_FRAME_PATTERNS
    """Patterns selecting which child frames receive broadcasts."""

    send_add_to_cart_variant: bool = True
    """Also broadcast the older ADD_TO_CART/payload message shape."""

    grace_delay_seconds: float = 1.0
    max_attempts: int = 3
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 8000
    exponential_backoff: bool = True
    request_timeout_seconds: float = 5.0
    max_url_length: int = 2000

    handshake_attempts: int = 5
    handshake_interval_seconds: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts", "max_attempts must be at least 1")
        if self.grace_delay_seconds < 0:
            raise ConfigurationError("grace_delay_seconds", "grace_delay_seconds must not be negative")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms", "retry_delay_ms must not be negative")
        if self.max_url_length < 100:
            raise ConfigurationError("max_url_length", "max_url_length is unrealistically small")

    @property
    def storage_keys(self) -> Tuple[str, ...]:
        """Canonical key first, then legacy aliases, without duplicates."""
        keys = [self.canonical_storage_key]
        for key in self.legacy_storage_keys:
            if key not in keys:
                keys.append(key)
        return tuple(keys)

    def with_overrides(self, **overrides) -> "IntegrationProfile":
        return replace(self, **overrides)


PROFILES: Dict[str, IntegrationProfile] = {
    "sales_page": IntegrationProfile(
        name="sales_page",
        source="tenera-integration",
        checkout_base_url=CHECKOUT_BASE_URL,
        orders_endpoint=ORDERS_ENDPOINT,
    ),
    "systeme": IntegrationProfile(
        name="systeme",
        source="systeme-integration",
        checkout_base_url=CHECKOUT_BASE_URL,
        orders_endpoint=ORDERS_ENDPOINT,
        send_add_to_cart_variant=False,
    ),
    "landing_page": IntegrationProfile(
        name="landing_page",
        source="landing-page-integration",
        checkout_base_url=CHECKOUT_BASE_URL,
        orders_endpoint=ORDERS_ENDPOINT,
        legacy_storage_keys=("cart", "cartItems"),
    ),
    "website": IntegrationProfile(
        name="website",
        source="website-integration",
        checkout_base_url=CHECKOUT_BASE_URL,
        orders_endpoint=ORDERS_ENDPOINT,
        legacy_storage_keys=("cart", "teneraCart", "cartItems"),
    ),
}


def get_profile(name: str) -> IntegrationProfile:
    """
    Look up a named profile.

    Raises:
        ConfigurationError: Unknown profile name
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise ConfigurationError(
            "CART_RELAY_PROFILE",
            f"Unknown integration profile '{name}' (known: {', '.join(sorted(PROFILES))})"
        )


def profile_from_env(default: str = "sales_page") -> IntegrationProfile:
    """
    Build a profile from CART_RELAY_* environment variables.

    Starts from the profile named by CART_RELAY_PROFILE (or ``default``)
    and overrides whichever settings are present in the environment.
    """
    load_dotenv(override=False)
    profile = get_profile(os.environ.get("CART_RELAY_PROFILE", default))

    overrides = {}
    string_settings = {
        "CART_RELAY_CHECKOUT_BASE_URL": "checkout_base_url",
        "CART_RELAY_ORDERS_ENDPOINT": "orders_endpoint",
        "CART_RELAY_SNAPSHOT_ENDPOINT": "snapshot_endpoint",
        "CART_RELAY_SOURCE": "source",
    }
    for env_name, attr in string_settings.items():
        if os.environ.get(env_name):
            overrides[attr] = os.environ[env_name]

    if os.environ.get("CART_RELAY_ALLOWED_ORIGINS"):
        overrides["allowed_origins"] = tuple(
            origin.strip()
            for origin in os.environ["CART_RELAY_ALLOWED_ORIGINS"].split(",")
            if origin.strip()
        )

    numeric_settings = {
        "CART_RELAY_GRACE_DELAY_SECONDS": ("grace_delay_seconds", float),
        "CART_RELAY_MAX_ATTEMPTS": ("max_attempts", int),
        "CART_RELAY_RETRY_DELAY_MS": ("retry_delay_ms", int),
        "CART_RELAY_REQUEST_TIMEOUT_SECONDS": ("request_timeout_seconds", float),
        "CART_RELAY_MAX_URL_LENGTH": ("max_url_length", int),
    }
    for env_name, (attr, cast) in numeric_settings.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            overrides[attr] = cast(raw)
        except ValueError:
            raise ConfigurationError(env_name, f"{env_name} must be a number, got {raw!r}")

    return profile.with_overrides(**overrides) if overrides else profile
