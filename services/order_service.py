"""
Server-side order intake and snapshot references.

Backs the orders endpoint that storefront pages POST their cart to, and
the snapshot reference endpoint used when a cart is too large for the
redirect URL.

IDEMPOTENCY:
    A storefront retries its POST up to three times with the same
    ``idempotencyKey`` (also sent as the ``Idempotency-Key`` header). The
    first request creates the order; replays return the existing order
    unchanged, so retries can never create duplicates.

NEVER TRUST CLIENT TOTALS:
    Item fields are sanitised (HTML stripped with bleach, lengths clipped,
    price >= 0, quantity >= 1) and the total is recomputed from the lines.
    A client-supplied ``totalAmount`` is ignored.

Thread Safety:
    OrderRepository and SnapshotReferenceStore guard their dicts with a
    threading.Lock; records handed out are copies.
"""

from __future__ import annotations

import copy
import secrets
import threading
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

import bleach

from core.exceptions import InvalidPayloadError, OrderNotFoundError
from models.cart import MAX_NAME_LENGTH, MAX_SKU_LENGTH, UNKNOWN_PRODUCT_NAME, CartLine
from models.order import CustomerInfo, OrderRecord
from modules.currency import to_minor
from logging_config import get_logger


logger = get_logger(__name__)

MAX_SOURCE_LENGTH = 255
MAX_ITEMS_PER_ORDER = 100
MAX_WHOLE_NUMBER = 10 ** 15

# Outcomes of OrderRepository.upsert_paid_by_reference
UPSERT_DUPLICATE = "duplicate"
UPSERT_UPDATED = "updated"
UPSERT_CREATED = "created"


def sanitize_text(text: Any, max_length: Optional[int] = None) -> str:
    """
    Strip HTML from user-supplied text and clip it.

    Args:
        text: Raw input (non-strings are converted)
        max_length: Optional maximum length to enforce

    Returns:
        Sanitized text safe for storage and display
    """
    if text is None:
        return ""
    text = str(text).strip()
    if not text:
        return ""

    text = bleach.clean(text, tags=[], strip=True)

    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _to_int(value: Any, field: str) -> int:
    """Parse a whole number from JSON input; anything else is a 400."""
    if isinstance(value, bool):
        raise InvalidPayloadError(f"{field} must be a number", field="items")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidPayloadError(f"{field} must be a number", field="items")
    if not number.is_finite() or abs(number) > MAX_WHOLE_NUMBER:
        raise InvalidPayloadError(f"{field} is out of range", field="items")
    if number != number.to_integral_value():
        raise InvalidPayloadError(f"{field} must be a whole number", field="items")
    return int(number)


def sanitize_item(item: Any) -> CartLine:
    """
    Turn one posted item into a clean CartLine.

    Accepts the wire form (``unitPriceMinor``) and the legacy form
    (``price`` in major units). Negative prices become 0 and quantities
    below 1 become 1.

    Raises:
        InvalidPayloadError: Not an object, no identifier, or a bad number
    """
    if not isinstance(item, dict):
        raise InvalidPayloadError("Each item must be an object", field="items")

    identifier = sanitize_text(item.get("sku") or item.get("id"), MAX_SKU_LENGTH)
    if not identifier:
        raise InvalidPayloadError("Item is missing an id", field="items")

    name = sanitize_text(item.get("name"), MAX_NAME_LENGTH) or UNKNOWN_PRODUCT_NAME

    if item.get("unitPriceMinor") is not None:
        unit_price_minor = _to_int(item["unitPriceMinor"], "unitPriceMinor")
    elif item.get("price") is not None:
        price = item["price"]
        if isinstance(price, (int, float)) and not isinstance(price, bool) and price < 0:
            price = 0
        try:
            unit_price_minor = to_minor(price)
        except ValueError as e:
            raise InvalidPayloadError(f"price: {e}", field="items")
    else:
        raise InvalidPayloadError("Item is missing a price", field="items")

    raw_quantity = item.get("quantity")
    quantity = _to_int(raw_quantity, "quantity") if raw_quantity is not None else 1

    return CartLine(
        sku=identifier,
        name=name,
        unit_price_minor=max(0, unit_price_minor),
        quantity=max(1, quantity),
    )


# =============================================================================
# ORDER REPOSITORY
# =============================================================================

class OrderRepository:
    """
    In-memory order table with lookups by ID, idempotency key and payment
    reference.
    """

    def __init__(self):
        self._orders: Dict[str, OrderRecord] = {}
        self._by_idempotency_key: Dict[str, str] = {}
        self._by_reference: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add_if_absent(self, record: OrderRecord) -> Tuple[OrderRecord, bool]:
        """
        Insert unless an order with the same idempotency key exists.

        Returns:
            (stored order, created)
        """
        with self._lock:
            if record.idempotency_key:
                existing_id = self._by_idempotency_key.get(record.idempotency_key)
                if existing_id is not None:
                    return copy.deepcopy(self._orders[existing_id]), False
            self._insert(record)
            return copy.deepcopy(record), True

    def get(self, order_id: str) -> OrderRecord:
        """
        Raises:
            OrderNotFoundError: No such order
        """
        with self._lock:
            record = self._orders.get(order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            return copy.deepcopy(record)

    def find_by_idempotency_key(self, key: str) -> Optional[OrderRecord]:
        with self._lock:
            order_id = self._by_idempotency_key.get(key)
            return copy.deepcopy(self._orders[order_id]) if order_id else None

    def find_by_reference(self, reference: str) -> Optional[OrderRecord]:
        with self._lock:
            order_id = self._by_reference.get(reference)
            return copy.deepcopy(self._orders[order_id]) if order_id else None

    def mark_paid(
        self,
        order_id: str,
        payment_reference: str,
        amount_minor: int,
        customer: Optional[CustomerInfo] = None,
    ) -> OrderRecord:
        """Apply a payment confirmation to a stored order."""
        with self._lock:
            record = self._orders.get(order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            self._apply_payment(record, payment_reference, amount_minor, customer)
            return copy.deepcopy(record)

    def upsert_paid_by_reference(
        self,
        payment_reference: str,
        amount_minor: int,
        build_record: Callable[[], OrderRecord],
        idempotency_key: Optional[str] = None,
        customer: Optional[CustomerInfo] = None,
    ) -> Tuple[OrderRecord, str]:
        """
        Apply a payment once per reference.

        Lookup and write happen under one lock, so overlapping deliveries of
        the same reference cannot both create an order.

        Args:
            payment_reference: Sanitised provider reference
            amount_minor: Amount actually paid
            build_record: Called only when a new paid order must be inserted
            idempotency_key: Links the payment to a pending storefront order
            customer: Customer details from the payment

        Returns:
            (stored order, outcome) where outcome is "duplicate", "updated"
            or "created"
        """
        with self._lock:
            order_id = self._by_reference.get(payment_reference)
            if order_id is not None and self._orders[order_id].is_paid:
                return copy.deepcopy(self._orders[order_id]), UPSERT_DUPLICATE

            if order_id is None and idempotency_key:
                order_id = self._by_idempotency_key.get(idempotency_key)

            if order_id is not None:
                record = self._orders[order_id]
                self._apply_payment(record, payment_reference, amount_minor, customer)
                return copy.deepcopy(record), UPSERT_UPDATED

            record = build_record()
            self._insert(record)
            self._by_reference[payment_reference] = record.id
            return copy.deepcopy(record), UPSERT_CREATED

    # Callers hold self._lock

    def _insert(self, record: OrderRecord) -> None:
        self._orders[record.id] = record
        if record.idempotency_key:
            self._by_idempotency_key[record.idempotency_key] = record.id
        if record.payment_reference:
            self._by_reference[record.payment_reference] = record.id

    def _apply_payment(
        self,
        record: OrderRecord,
        payment_reference: str,
        amount_minor: int,
        customer: Optional[CustomerInfo],
    ) -> None:
        record.mark_paid(payment_reference, amount_minor)
        if customer is not None:
            record.customer = customer
        self._by_reference[payment_reference] = record.id

    def count(self) -> int:
        with self._lock:
            return len(self._orders)


# =============================================================================
# SNAPSHOT REFERENCES
# =============================================================================

class SnapshotReferenceStore:
    """
    Short-lived server-side copies of carts too large for a URL.

    Entries expire after ``ttl_seconds`` (one checkout session). Storing the
    same idempotency key twice returns the first token.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, List[Dict[str, Any]]]] = {}
        self._tokens_by_key: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, lines: List[Dict[str, Any]], idempotency_key: Optional[str] = None) -> str:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            if idempotency_key and idempotency_key in self._tokens_by_key:
                token = self._tokens_by_key[idempotency_key]
                if token in self._entries:
                    return token

            token = secrets.token_urlsafe(16)
            self._entries[token] = (now + self._ttl_seconds, copy.deepcopy(lines))
            if idempotency_key:
                self._tokens_by_key[idempotency_key] = token
            return token

    def get(self, token: str) -> Optional[List[Dict[str, Any]]]:
        """Stored lines, or None when the token is unknown or expired."""
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            entry = self._entries.get(token)
            return copy.deepcopy(entry[1]) if entry else None

    def _purge_expired(self, now: float) -> None:
        expired = [token for token, (expires_at, _) in self._entries.items() if expires_at <= now]
        for token in expired:
            del self._entries[token]
        if expired:
            live = set(self._entries)
            self._tokens_by_key = {k: t for k, t in self._tokens_by_key.items() if t in live}
            logger.debug(f"Purged {len(expired)} expired snapshot reference(s)")

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)


# =============================================================================
# ORDER SERVICE
# =============================================================================

class OrderService:
    """
    Order intake for the orders endpoint and snapshot reference endpoint.

    Args:
        repository: Order storage
        snapshot_store: Snapshot reference storage
    """

    def __init__(self, repository: OrderRepository, snapshot_store: SnapshotReferenceStore):
        self._repository = repository
        self._snapshot_store = snapshot_store

    @property
    def repository(self) -> OrderRepository:
        return self._repository

    @staticmethod
    def sanitize_items(raw_items: Any) -> List[CartLine]:
        """
        Raises:
            InvalidPayloadError: Missing, empty or oversized item list, or a bad item
        """
        if not isinstance(raw_items, list) or not raw_items:
            raise InvalidPayloadError("Invalid or missing items in request", field="items")
        if len(raw_items) > MAX_ITEMS_PER_ORDER:
            raise InvalidPayloadError(f"At most {MAX_ITEMS_PER_ORDER} items per order", field="items")
        return [sanitize_item(item) for item in raw_items]

    def intake(
        self,
        payload: Any,
        idempotency_header: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> Tuple[OrderRecord, bool]:
        """
        Create an order from a storefront POST, or return the existing one.

        Args:
            payload: Decoded JSON body
            idempotency_header: Value of the Idempotency-Key header
            referer: Referer header, used when the body has no source

        Returns:
            (order, created); created is False for a replayed request

        Raises:
            InvalidPayloadError: Body is not an object or items are invalid
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Request body must be a JSON object")

        idempotency_key = sanitize_text(payload.get("idempotencyKey") or idempotency_header, 128) or None

        if idempotency_key:
            existing = self._repository.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(f"Replayed order request {idempotency_key[:8]} -> order {existing.id[:8]}")
                return existing, False

        lines = self.sanitize_items(payload.get("items"))
        total = sum(line.line_total_minor for line in lines)

        client_total = payload.get("totalAmount")
        if client_total is not None and client_total != total:
            logger.warning(f"Client total {client_total!r} differs from recomputed total {total}")

        customer_data = payload.get("customerInfo")
        customer = CustomerInfo(
            name=sanitize_text(customer_data.get("name"), 255),
            email=sanitize_text(customer_data.get("email"), 255).lower(),
            phone=sanitize_text(customer_data.get("phone"), 50) or None,
        ) if isinstance(customer_data, dict) else CustomerInfo()

        record = OrderRecord(
            id=str(uuid.uuid4()),
            items=[line.to_dict() for line in lines],
            total_amount_minor=total,
            source=sanitize_text(payload.get("source") or referer or "direct", MAX_SOURCE_LENGTH),
            idempotency_key=idempotency_key,
            customer=customer,
        )

        stored, created = self._repository.add_if_absent(record)
        if created:
            logger.info(f"Order {stored.id[:8]} created: {len(lines)} line(s), total={total}")
        return stored, created

    def get_order(self, order_id: str) -> OrderRecord:
        return self._repository.get(order_id)

    def store_snapshot(self, payload: Any) -> str:
        """
        Store a cart for a ``cartRef`` redirect.

        Raises:
            InvalidPayloadError: No usable cart in the body
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Request body must be a JSON object")
        lines = self.sanitize_items(payload.get("cart"))
        idempotency_key = sanitize_text(payload.get("idempotencyKey"), 128) or None
        token = self._snapshot_store.put([line.to_dict() for line in lines], idempotency_key)
        logger.info(f"Stored cart snapshot ({len(lines)} line(s)) as reference {token[:6]}...")
        return token

    def fetch_snapshot(self, token: str) -> List[Dict[str, Any]]:
        """
        Raises:
            OrderNotFoundError: Unknown or expired token
        """
        lines = self._snapshot_store.get(token)
        if lines is None:
            raise OrderNotFoundError(token, kind="snapshot")
        return lines
