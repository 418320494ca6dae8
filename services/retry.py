"""
Retry/backoff controller for cart propagation.

One propagation attempt pushes the snapshot over every client-side channel:

    1. Storage mirror write (all keys)
    2. Cross-window broadcast (CART_DATA, plus ADD_TO_CART when enabled)
    3. Remote POST to the orders endpoint

Storage and messaging have no delivery signal, so only the remote POST
decides whether an attempt succeeded. Failed attempts are repeated up to
``max_attempts`` times with the SAME idempotency key, sleeping between
attempts:

    exponential (default): uniform(0, delay_ms * 2**(n-1)), capped at max_delay_ms
    fixed:                 delay_ms

For the default (3 attempts, 1000 ms) the total sleep is at most
1000 + 2000 = 3000 ms.

Exhausting the attempts is not an error: sync_with_retry() returns False
and the caller redirects with ``synced=false``.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from typing import Callable, Optional

from core.api_client import OrdersAPIClient
from models.cart import CartSnapshot
from modules.messenger import CrossWindowMessenger
from modules.storage_mirror import StorageMirror
from logging_config import get_logger


class RetryController:
    """
    Runs propagation attempts until the remote POST succeeds.

    Args:
        mirror: Storage mirror written on every attempt
        messenger: Messenger used for the broadcast on every attempt
        client: Orders endpoint client
        source: ``source`` value for messages and the POST body
        page_url: URL of the page the checkout started from
        redirect_url: Checkout URL advertised in broadcast messages
        include_legacy_variant: Also broadcast ADD_TO_CART
        exponential: Exponential backoff with full jitter (False = fixed delay)
        max_delay_ms: Cap on a single exponential delay
        sleep: Sleep function taking seconds (injectable for tests)
        rng: random.Random used for jitter (injectable for tests)
    """

    def __init__(
        self,
        mirror: StorageMirror,
        messenger: CrossWindowMessenger,
        client: OrdersAPIClient,
        source: str,
        page_url: str = "",
        redirect_url: Optional[str] = None,
        include_legacy_variant: bool = True,
        exponential: bool = True,
        max_delay_ms: int = 8000,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._mirror = mirror
        self._messenger = messenger
        self._client = client
        self._source = source
        self._page_url = page_url
        self._redirect_url = redirect_url
        self._include_legacy_variant = include_legacy_variant
        self._exponential = exponential
        self._max_delay_ms = max_delay_ms
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._logger = logger or get_logger(__name__)

        self.attempts_made = 0

    def backoff_ms(self, failed_attempt: int, delay_ms: int) -> float:
        """
        Delay before the attempt following ``failed_attempt`` (1-based).
        """
        if not self._exponential:
            return float(delay_ms)
        ceiling = min(delay_ms * 2 ** (failed_attempt - 1), self._max_delay_ms)
        return self._rng.uniform(0, ceiling)

    def attempt(self, snapshot: CartSnapshot, idempotency_key: str) -> bool:
        """
        Run one propagation attempt over every channel.

        Returns:
            True if the remote POST succeeded
        """
        try:
            self._mirror.write(snapshot)
        except Exception as e:
            self._logger.error(f"Storage channel failed: {e}")

        try:
            delivered = self._messenger.broadcast_cart(
                snapshot,
                self._source,
                redirect_url=self._redirect_url,
                include_legacy_variant=self._include_legacy_variant,
            )
            self._logger.debug(f"Broadcast delivered to {delivered} target(s)")
        except Exception as e:
            self._logger.error(f"Messaging channel failed: {e}")

        try:
            result = self._client.post(snapshot, idempotency_key, source=self._page_url or self._source)
        except Exception as e:
            self._logger.error(f"Remote channel failed: {e}")
            return False
        return result.ok

    def sync_with_retry(
        self,
        snapshot: CartSnapshot,
        max_attempts: int = 3,
        delay_ms: int = 1000,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """
        Propagate ``snapshot`` until the remote POST succeeds or attempts run out.

        Args:
            snapshot: Cart to propagate
            max_attempts: Upper bound on attempts (at least 1)
            delay_ms: Base delay between attempts
            idempotency_key: Reused for every attempt (generated if None)

        Returns:
            True if one attempt succeeded, False after exhausting all attempts
        """
        if idempotency_key is None:
            idempotency_key = str(uuid.uuid4())
        max_attempts = max(1, max_attempts)

        for attempt in range(1, max_attempts + 1):
            self.attempts_made = attempt
            self._logger.info(f"Sync attempt {attempt}/{max_attempts}")

            if self.attempt(snapshot, idempotency_key):
                self._logger.info(f"Cart synced on attempt {attempt}")
                return True

            if attempt < max_attempts:
                wait_ms = self.backoff_ms(attempt, delay_ms)
                self._logger.debug(f"Retrying in {wait_ms:.0f} ms")
                self._sleep(wait_ms / 1000.0)

        self._logger.warning(f"Cart sync failed after {max_attempts} attempts")
        return False
