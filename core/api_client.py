"""
HTTP client for the remote orders endpoint.

Posts cart snapshots for durability and later reconciliation, and stores /
fetches server-side snapshot references for carts too large for a URL.

FAILURE POLICY:
    Public methods never raise on transport problems. A failed post returns
    ``PostResult(ok=False, ...)`` and is logged; the retry controller decides
    what to do next and checkout proceeds regardless.

TIMEOUTS:
    Every request carries a bounded timeout (default 5 seconds) so a hanging
    endpoint cannot stall the redirect's grace window.

THREAD SAFETY:
    A client owns one ``requests.Session``. Create one client per checkout
    attempt (or per thread) rather than sharing one across threads.

Usage:
    client = OrdersAPIClient(profile.orders_endpoint, profile.snapshot_endpoint)
    result = client.post(snapshot, idempotency_key, source=window.location.href)
    if not result.ok:
        ...  # retry or carry on with synced=false
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests

from models.cart import CartSnapshot, to_iso
from .exceptions import RemotePersistenceError


@dataclass(frozen=True)
class PostResult:
    """Outcome of one POST to the orders endpoint."""

    ok: bool
    status_code: Optional[int] = None
    body: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class OrdersAPIClient:
    """
    Client for the orders endpoint and the snapshot reference endpoint.

    Attributes:
        orders_endpoint: URL receiving cart POSTs
        snapshot_endpoint: URL of the snapshot reference collection (optional)
        timeout_seconds: Per-request timeout
    """

    def __init__(
        self,
        orders_endpoint: str,
        snapshot_endpoint: Optional[str] = None,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not orders_endpoint:
            raise ValueError("orders_endpoint is required")

        self.orders_endpoint = orders_endpoint
        self.snapshot_endpoint = snapshot_endpoint
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.setdefault("Content-Type", "application/json")
        self._logger = logger or logging.getLogger("cart_relay.core.api_client")

    @staticmethod
    def build_payload(snapshot: CartSnapshot, idempotency_key: str, source: str) -> Dict[str, Any]:
        """
        Build the POST body.

        ``totalAmount`` is informational; the server recomputes it from
        the lines and never trusts the client's figure.
        """
        return {
            "items": snapshot.to_wire_lines(),
            "totalAmount": snapshot.total_minor,
            "timestamp": to_iso(snapshot.captured_at),
            "source": source,
            "idempotencyKey": idempotency_key,
        }

    def post(self, snapshot: CartSnapshot, idempotency_key: str, source: str) -> PostResult:
        """
        POST a snapshot to the orders endpoint.

        Args:
            snapshot: Cart to persist
            idempotency_key: Same value for every retry of one checkout attempt
            source: Page URL the checkout started from

        Returns:
            PostResult; ``ok`` is True only for a 2xx response
        """
        payload = self.build_payload(snapshot, idempotency_key, source)
        try:
            status_code, body = self._send("POST", self.orders_endpoint, payload, idempotency_key)
        except RemotePersistenceError as e:
            self._logger.warning(f"Orders POST failed: {e.message}")
            return PostResult(ok=False, status_code=e.status_code, error=e.message)

        self._logger.info(
            f"Orders POST accepted ({len(snapshot.lines)} lines, total={snapshot.total_minor})"
        )
        return PostResult(ok=True, status_code=status_code, body=body)

    def store_snapshot(self, snapshot: CartSnapshot, idempotency_key: str) -> Optional[str]:
        """
        Store a snapshot server-side and return its reference token.

        Returns:
            Token string, or None when no snapshot endpoint is configured or
            the request failed
        """
        if not self.snapshot_endpoint:
            self._logger.debug("No snapshot endpoint configured")
            return None

        payload = {
            "cart": snapshot.to_wire_lines(),
            "timestamp": to_iso(snapshot.captured_at),
            "idempotencyKey": idempotency_key,
        }
        try:
            _, body = self._send("POST", self.snapshot_endpoint, payload, idempotency_key)
        except RemotePersistenceError as e:
            self._logger.warning(f"Snapshot store failed: {e.message}")
            return None

        token = body.get("token")
        if not isinstance(token, str) or not token:
            self._logger.warning("Snapshot store response carried no token")
            return None
        return token

    def fetch_snapshot(self, token: str) -> Optional[CartSnapshot]:
        """Fetch a snapshot stored by ``store_snapshot``; None if unavailable."""
        if not self.snapshot_endpoint or not token:
            return None

        url = f"{self.snapshot_endpoint.rstrip('/')}/{token}"
        try:
            _, body = self._send("GET", url)
        except RemotePersistenceError as e:
            self._logger.warning(f"Snapshot fetch failed: {e.message}")
            return None

        lines = body.get("cart")
        if not isinstance(lines, list):
            return None
        return CartSnapshot.from_lines(lines, source_origin="server-reference")

    def close(self) -> None:
        self._session.close()

    def _send(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        """
        Perform one request and decode its JSON body.

        Raises:
            RemotePersistenceError: Network failure, timeout or non-2xx status
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout:
            raise RemotePersistenceError(f"{method} {url} timed out after {self.timeout_seconds}s")
        except requests.RequestException as e:
            raise RemotePersistenceError(f"{method} {url} failed: {e}")

        if not 200 <= response.status_code < 300:
            raise RemotePersistenceError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        return response.status_code, body
