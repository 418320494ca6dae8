"""
Redirect URL codec.

The redirect URL is itself a propagation channel: the cart travels in the
query string of the full page navigation to the checkout page.

Format:
    <checkoutBaseUrl>?cart=<JSON CartLine[]>&orderData=<JSON OrderSummary>&synced=<true|false>&t=<epoch ms>

Oversized carts use a server-side reference instead:
    <checkoutBaseUrl>?cartRef=<token>&synced=<true|false>&t=<epoch ms>

Query parameters already present on the base URL are preserved. The
``cart`` parameter depends only on the snapshot's lines, so building the
URL twice for the same snapshot yields the same ``cart`` value.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from logging_config import get_logger
from models.cart import CartSnapshot, OrderSummary


logger = get_logger(__name__)

# Parameters this codec owns; stale copies on the base URL are replaced
PROTOCOL_PARAMS = ("cart", "orderData", "cartRef", "synced", "t")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _with_params(base_url: str, params: List[Tuple[str, str]]) -> str:
    parts = urlsplit(base_url)
    existing = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in PROTOCOL_PARAMS]
    query = urlencode(existing + params, quote_via=quote)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def build_redirect_url(
    base_url: str,
    snapshot: CartSnapshot,
    synced: bool,
    idempotency_key: str,
    now_ms: Optional[int] = None,
) -> str:
    """Build the full redirect URL carrying the cart and order summary."""
    summary = OrderSummary.from_snapshot(snapshot, synced=synced, idempotency_key=idempotency_key)
    return _with_params(base_url, [
        ("cart", _compact_json(snapshot.to_wire_lines())),
        ("orderData", _compact_json(summary.to_dict())),
        ("synced", "true" if synced else "false"),
        ("t", str(now_ms if now_ms is not None else _now_ms())),
    ])


def build_reference_url(
    base_url: str,
    reference_token: Optional[str],
    synced: bool,
    now_ms: Optional[int] = None,
) -> str:
    """
    Build a redirect URL without cart content.

    With a token, the receiver fetches the snapshot from the server; without
    one it falls back to storage and the handshake.
    """
    params = []
    if reference_token:
        params.append(("cartRef", reference_token))
    params.append(("synced", "true" if synced else "false"))
    params.append(("t", str(now_ms if now_ms is not None else _now_ms())))
    return _with_params(base_url, params)


@dataclass(frozen=True)
class RedirectPayload:
    """What a receiving page can recover from its own URL."""

    snapshot: Optional[CartSnapshot]
    order_data: Optional[Dict[str, Any]]
    synced: Optional[bool]
    reference_token: Optional[str]
    timestamp_ms: Optional[int]


def parse_redirect_url(url: str, source_origin: str = "url") -> RedirectPayload:
    """
    Recover protocol parameters from a redirect URL.

    Malformed values are treated as absent, never raised.
    """
    params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))

    snapshot = None
    raw_cart = params.get("cart")
    if raw_cart:
        try:
            lines = json.loads(raw_cart)
        except ValueError:
            logger.warning("Ignoring malformed cart parameter in URL")
        else:
            if isinstance(lines, list):
                snapshot = CartSnapshot.from_lines(lines, source_origin=source_origin)

    order_data = None
    raw_order = params.get("orderData")
    if raw_order:
        try:
            parsed = json.loads(raw_order)
        except ValueError:
            logger.warning("Ignoring malformed orderData parameter in URL")
        else:
            if isinstance(parsed, dict):
                order_data = parsed

    synced = None
    if "synced" in params:
        synced = params["synced"].lower() == "true"

    timestamp_ms = None
    raw_timestamp = params.get("t", "")
    if raw_timestamp.isascii() and raw_timestamp.isdigit():
        timestamp_ms = int(raw_timestamp)

    return RedirectPayload(
        snapshot=snapshot,
        order_data=order_data,
        synced=synced,
        reference_token=params.get("cartRef") or None,
        timestamp_ms=timestamp_ms,
    )
