"""
Transport orchestrator: the checkout action.

Drives one checkout attempt through its states:

    IDLE -> COLLECTING -> PROPAGATING -> REDIRECTING -> DONE
                              |
                              +-> FAILED -> REDIRECTING -> DONE

An empty cart goes straight from COLLECTING to REDIRECTING.

NEVER BLOCK CHECKOUT:
    Every step is guarded. Whatever happens to storage, messaging or the
    orders endpoint, the user is navigated to the checkout page. A sync
    that did not finish in time only turns ``synced`` to false.

THREADING:
    Propagation runs in its own daemon thread ("Sync-<attempt>") with its
    OWN OrdersAPIClient. The calling thread sleeps the fixed grace delay
    (not cancellable, not shortened by an early success), then looks at
    whether the sync thread finished successfully and redirects. Retries
    still running after the redirect are allowed to finish in the
    background.

Flow:
    1. Collect a CartSnapshot (explicit lines, then CartStore, then storage)
    2. Start the sync thread (RetryController.sync_with_retry)
    3. Sleep the grace delay
    4. Build the redirect URL; store the cart server-side if the URL is too long
    5. navigator.assign(url)

Usage:
    orchestrator = TransportOrchestrator(profile, window, mirror, messenger,
                                         cart_store=store)
    outcome = orchestrator.checkout()
    outcome.redirect_url  # where the user went
    outcome.synced        # whether the orders endpoint confirmed in time
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.api_client import OrdersAPIClient
from core.window import Window
from models.cart import CartSnapshot
from modules.messenger import CrossWindowMessenger
from modules.profiles import IntegrationProfile
from modules.redirect import build_redirect_url, build_reference_url
from modules.storage_mirror import StorageMirror
from services.cart_store import CartStore
from services.retry import RetryController
from logging_config import get_logger, get_checkout_logger, set_thread_name


logger = get_logger(__name__)


class CheckoutState(Enum):
    """States of one checkout attempt."""

    IDLE = "idle"
    """Nothing has happened yet."""

    COLLECTING = "collecting"
    """Resolving the cart snapshot."""

    PROPAGATING = "propagating"
    """Sync thread running, grace delay in progress."""

    FAILED = "failed"
    """Sync did not confirm within the grace delay."""

    REDIRECTING = "redirecting"
    """Building the redirect URL and navigating."""

    DONE = "done"
    """Navigation issued."""


@dataclass
class CheckoutOutcome:
    """Record of one checkout attempt, returned by checkout()."""

    attempt_id: str
    state: CheckoutState = CheckoutState.IDLE
    snapshot: Optional[CartSnapshot] = None
    redirect_url: Optional[str] = None
    synced: bool = False
    reference_token: Optional[str] = None
    transitions: List[CheckoutState] = field(default_factory=lambda: [CheckoutState.IDLE])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "state": self.state.value,
            "redirect_url": self.redirect_url,
            "synced": self.synced,
            "reference_token": self.reference_token,
            "items": len(self.snapshot.lines) if self.snapshot else 0,
            "transitions": [s.value for s in self.transitions],
        }


class _SyncTask:
    """Result holder shared between the checkout thread and its sync thread."""

    def __init__(self):
        self.finished = threading.Event()
        self.succeeded = False
        self.thread: Optional[threading.Thread] = None


class TransportOrchestrator:
    """
    Runs checkout attempts for one page.

    Args:
        profile: Integration settings (endpoints, delays, retry policy)
        window: The page's window
        mirror: Storage mirror for the page's storage
        messenger: Messenger bound to ``window``
        cart_store: Live cart, consulted before storage
        navigator: Object with ``assign(url)``; defaults to ``window.location``
        client_factory: Builds a fresh OrdersAPIClient (one per thread)
        sleep: Sleep used for the grace delay
        retry_sleep: Sleep used between retry attempts
    """

    def __init__(
        self,
        profile: IntegrationProfile,
        window: Window,
        mirror: StorageMirror,
        messenger: CrossWindowMessenger,
        cart_store: Optional[CartStore] = None,
        navigator: Any = None,
        client_factory: Optional[Callable[[], OrdersAPIClient]] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_sleep: Callable[[float], None] = time.sleep,
    ):
        self._profile = profile
        self._window = window
        self._mirror = mirror
        self._messenger = messenger
        self._cart_store = cart_store
        self._navigator = navigator if navigator is not None else window.location
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._retry_sleep = retry_sleep

        self._tasks: Dict[str, _SyncTask] = {}
        self._tasks_lock = threading.Lock()

    def _default_client(self) -> OrdersAPIClient:
        return OrdersAPIClient(
            self._profile.orders_endpoint,
            self._profile.snapshot_endpoint,
            timeout_seconds=self._profile.request_timeout_seconds,
        )

    # =========================================================================
    # COLLECTING
    # =========================================================================

    def collect(self, lines: Optional[Iterable[Any]] = None) -> CartSnapshot:
        """
        Resolve the cart to propagate.

        Priority: explicit ``lines``, then the CartStore, then the first
        usable storage key. Sources that yield no valid line are skipped;
        when nothing is found the result is an empty snapshot.
        """
        origin = self._window.origin

        if lines is not None:
            snapshot = CartSnapshot.from_lines(lines, source_origin=origin)
            if not snapshot.is_empty:
                return snapshot

        if self._cart_store is not None and not self._cart_store.is_empty:
            return self._cart_store.snapshot(source_origin=origin)

        stored = self._mirror.read_first_available()
        if stored is not None:
            return stored

        return CartSnapshot.empty(source_origin=origin)

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def checkout(self, lines: Optional[Iterable[Any]] = None) -> CheckoutOutcome:
        """
        Run one checkout attempt. Always ends in a navigation.

        Args:
            lines: Cart lines supplied by the caller (optional)

        Returns:
            CheckoutOutcome in state DONE
        """
        attempt_id = str(uuid.uuid4())
        attempt_logger = get_checkout_logger(attempt_id)
        outcome = CheckoutOutcome(attempt_id=attempt_id)

        def transition(state: CheckoutState) -> None:
            outcome.state = state
            outcome.transitions.append(state)
            attempt_logger.debug(f"State -> {state.value}")

        # ---------------------------------------------------------------------
        # Collecting
        # ---------------------------------------------------------------------
        transition(CheckoutState.COLLECTING)
        try:
            snapshot = self.collect(lines)
        except Exception as e:
            attempt_logger.error(f"Cart collection failed, continuing with empty cart: {e}")
            snapshot = CartSnapshot.empty(source_origin=self._window.origin)
        outcome.snapshot = snapshot
        attempt_logger.info(
            f"Checkout with {len(snapshot.lines)} line(s), total={snapshot.total_minor}"
        )

        # ---------------------------------------------------------------------
        # Propagating
        # ---------------------------------------------------------------------
        if not snapshot.is_empty:
            transition(CheckoutState.PROPAGATING)
            try:
                task = self._start_sync(attempt_id, snapshot)
            except Exception as e:
                attempt_logger.error(f"Could not start sync thread: {e}")
                task = None

            self._sleep(self._profile.grace_delay_seconds)

            outcome.synced = bool(task and task.finished.is_set() and task.succeeded)
            if not outcome.synced:
                attempt_logger.warning("Sync not confirmed within grace delay, redirecting anyway")
                transition(CheckoutState.FAILED)
        else:
            attempt_logger.info("Cart is empty, redirecting without propagation")

        # ---------------------------------------------------------------------
        # Redirecting
        # ---------------------------------------------------------------------
        transition(CheckoutState.REDIRECTING)
        try:
            outcome.redirect_url, outcome.reference_token = self._redirect_url_for(
                snapshot, outcome.synced, attempt_id
            )
        except Exception as e:
            attempt_logger.error(f"Redirect URL build failed, using bare checkout URL: {e}")
            outcome.redirect_url = self._profile.checkout_base_url

        try:
            self._navigator.assign(outcome.redirect_url)
        except Exception as e:
            attempt_logger.error(f"Navigation failed: {e}")

        transition(CheckoutState.DONE)
        return outcome

    # =========================================================================
    # PROPAGATION
    # =========================================================================

    def _start_sync(self, attempt_id: str, snapshot: CartSnapshot) -> _SyncTask:
        task = _SyncTask()
        thread = threading.Thread(
            target=self._sync_thread_main,
            args=(attempt_id, snapshot, task),
            name=f"Sync-{attempt_id[:8]}",
            daemon=True,
        )
        task.thread = thread

        with self._tasks_lock:
            self._tasks[attempt_id] = task

        thread.start()
        return task

    def _sync_thread_main(self, attempt_id: str, snapshot: CartSnapshot, task: _SyncTask) -> None:
        set_thread_name(f"Sync-{attempt_id[:8]}")
        attempt_logger = get_checkout_logger(attempt_id)
        client = None

        try:
            client = self._client_factory()
            controller = RetryController(
                self._mirror,
                self._messenger,
                client,
                source=self._profile.source,
                page_url=self._window.location.href,
                redirect_url=self._profile.checkout_base_url,
                include_legacy_variant=self._profile.send_add_to_cart_variant,
                exponential=self._profile.exponential_backoff,
                max_delay_ms=self._profile.max_retry_delay_ms,
                sleep=self._retry_sleep,
                logger=attempt_logger,
            )
            task.succeeded = controller.sync_with_retry(
                snapshot,
                max_attempts=self._profile.max_attempts,
                delay_ms=self._profile.retry_delay_ms,
                idempotency_key=attempt_id,
            )
        except Exception as e:
            attempt_logger.error(f"Sync thread failed: {e}")
            task.succeeded = False
        finally:
            task.finished.set()
            if client is not None:
                client.close()
            with self._tasks_lock:
                self._tasks.pop(attempt_id, None)

    def pending_syncs(self) -> int:
        """Number of sync threads still running."""
        with self._tasks_lock:
            return sum(1 for task in self._tasks.values() if task.thread and task.thread.is_alive())

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """Wait for background sync threads to finish."""
        with self._tasks_lock:
            active = list(self._tasks.items())

        for attempt_id, task in active:
            if task.thread is not None and task.thread.is_alive():
                task.thread.join(timeout=timeout_per_thread)
                if task.thread.is_alive():
                    logger.warning(f"Sync thread {attempt_id[:8]} did not complete in time")

    # =========================================================================
    # REDIRECT
    # =========================================================================

    def _redirect_url_for(self, snapshot: CartSnapshot, synced: bool, attempt_id: str):
        """
        Returns:
            (url, reference_token); the token is None unless the cart was
            stored server-side because the full URL was too long
        """
        base_url = self._profile.checkout_base_url
        url = build_redirect_url(base_url, snapshot, synced, attempt_id)
        if len(url) <= self._profile.max_url_length:
            return url, None

        logger.warning(
            f"Redirect URL is {len(url)} characters (limit {self._profile.max_url_length}), "
            f"storing cart server-side"
        )
        client = self._client_factory()
        try:
            token = client.store_snapshot(snapshot, attempt_id)
        finally:
            client.close()

        if token is None:
            logger.warning("Snapshot reference unavailable, receiver must use storage or handshake")
        return build_reference_url(base_url, token, synced), token
