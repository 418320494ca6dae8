"""
Payment provider webhook handling.

The provider POSTs a JSON event signed with HMAC-SHA512 of the raw body
(hex digest in the ``x-paystack-signature`` header). Only verified
``charge.success`` events change orders; every other event type is
acknowledged and ignored.

Processing of charge.success:
    1. Validate customer email, reference and amount
    2. Sanitise the reference to [A-Za-z0-9_-]
    3. Order already paid under this reference -> "Already processed"
    4. Pending order linked by metadata.idempotency_key -> mark it paid
    5. Otherwise create a paid order from metadata.cart_items

The provider retries deliveries, so steps 3 to 5 are an idempotent upsert
keyed by the reference.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import InvalidPayloadError, SignatureVerificationError
from models.cart import CartSnapshot
from models.order import CustomerInfo, OrderRecord, OrderStatus, PaymentStatus
from services.order_service import UPSERT_DUPLICATE, UPSERT_UPDATED, OrderRepository, sanitize_text
from logging_config import get_logger, log_security_event


logger = get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS = "charge.success"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_REFERENCE_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")
_PHONE_UNSAFE_RE = re.compile(r"[^\d+\-\s()]")


@dataclass(frozen=True)
class WebhookResult:
    """What the route sends back to the provider."""

    message: str
    order_id: Optional[str] = None
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"received": True, "message": self.message}
        if self.order_id:
            data["orderId"] = self.order_id
        return data


class PaymentWebhookService:
    """
    Verifies and applies payment webhook events.

    Args:
        secret_key: Provider secret used as the HMAC key
        repository: Order storage shared with the orders endpoint
    """

    def __init__(self, secret_key: str, repository: OrderRepository):
        self._secret_key = secret_key
        self._repository = repository

    def verify_signature(self, raw_body: bytes, signature: Optional[str], ip_address: Optional[str] = None) -> None:
        """
        Raises:
            SignatureVerificationError: Missing secret, missing signature or mismatch
        """
        if not self._secret_key:
            logger.error("PAYSTACK_SECRET_KEY is not configured, rejecting webhook")
            raise SignatureVerificationError("webhook secret not configured")

        if not signature:
            log_security_event("webhook_missing_signature", ip_address=ip_address)
            raise SignatureVerificationError("missing signature")

        expected = hmac.new(self._secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature.strip().lower()):
            log_security_event("webhook_invalid_signature", ip_address=ip_address)
            raise SignatureVerificationError("signature mismatch")

    def handle(self, raw_body: bytes, signature: Optional[str], ip_address: Optional[str] = None) -> WebhookResult:
        """
        Verify and process one webhook delivery.

        Raises:
            SignatureVerificationError: Bad or missing signature (401)
            InvalidPayloadError: Malformed body or payment data (400)
        """
        self.verify_signature(raw_body, signature, ip_address)

        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidPayloadError("Invalid JSON")

        if not isinstance(event, dict) or not event.get("event") or not isinstance(event.get("data"), dict):
            raise InvalidPayloadError("Invalid payload")

        event_type = event["event"]
        data = event["data"]
        logger.info(f"Webhook received: {event_type} reference={data.get('reference')!r}")

        if event_type != CHARGE_SUCCESS:
            return WebhookResult(message=f"Event {event_type} ignored")

        return self._handle_charge_success(data, ip_address)

    def _handle_charge_success(self, data: Dict[str, Any], ip_address: Optional[str]) -> WebhookResult:
        customer_data = data.get("customer") if isinstance(data.get("customer"), dict) else {}
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

        raw_email = customer_data.get("email")
        raw_reference = data.get("reference")
        raw_amount = data.get("amount")
        if not raw_email or not raw_reference or not raw_amount:
            log_security_event("webhook_invalid_data", {"reference": raw_reference}, ip_address)
            raise InvalidPayloadError("Invalid payment data")

        email = str(raw_email).strip().lower()
        if not _EMAIL_RE.match(email):
            log_security_event("webhook_invalid_email", {"email": email}, ip_address)
            raise InvalidPayloadError("Invalid email format", field="email")

        reference = _REFERENCE_UNSAFE_RE.sub("", str(raw_reference))
        if not reference:
            raise InvalidPayloadError("Invalid reference", field="reference")

        if isinstance(raw_amount, bool) or (isinstance(raw_amount, float) and not raw_amount.is_integer()):
            raise InvalidPayloadError("Invalid amount", field="amount")
        try:
            amount_minor = int(raw_amount)
        except (TypeError, ValueError, OverflowError):
            raise InvalidPayloadError("Invalid amount", field="amount")
        if amount_minor <= 0:
            log_security_event("webhook_invalid_amount", {"reference": reference}, ip_address)
            raise InvalidPayloadError("Invalid amount", field="amount")

        customer = CustomerInfo(
            name=self._customer_name(customer_data, metadata),
            email=email,
            phone=_PHONE_UNSAFE_RE.sub("", str(metadata.get("customer_phone") or "")) or None,
        )

        def build_record() -> OrderRecord:
            return OrderRecord(
                id=str(uuid.uuid4()),
                items=self._cart_items(metadata),
                total_amount_minor=amount_minor,
                source="payment-webhook",
                status=OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
                payment_reference=reference,
                customer=customer,
            )

        idempotency_key = metadata.get("idempotency_key")
        stored, outcome = self._repository.upsert_paid_by_reference(
            reference,
            amount_minor,
            build_record,
            idempotency_key=str(idempotency_key) if idempotency_key else None,
            customer=customer,
        )

        if outcome == UPSERT_DUPLICATE:
            log_security_event("webhook_duplicate_payment", {"reference": reference}, ip_address)
            return WebhookResult(message="Already processed", order_id=stored.id, duplicate=True)

        if outcome == UPSERT_UPDATED:
            logger.info(f"Order {stored.id[:8]} marked paid (reference {reference})")
            return WebhookResult(message="Order updated", order_id=stored.id)

        logger.info(f"Order {stored.id[:8]} created from payment {reference}")
        return WebhookResult(message="Order created", order_id=stored.id)

    @staticmethod
    def _customer_name(customer_data: Dict[str, Any], metadata: Dict[str, Any]) -> str:
        name = metadata.get("customer_name") or " ".join(
            part for part in (customer_data.get("first_name"), customer_data.get("last_name")) if part
        )
        return sanitize_text(name, 255) or "Unknown"

    @staticmethod
    def _cart_items(metadata: Dict[str, Any]) -> list:
        """Cart lines from ``metadata.cart_items`` (a JSON string or a list)."""
        raw = metadata.get("cart_items") or "[]"
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring unparseable metadata.cart_items")
                return []
        if not isinstance(raw, list):
            return []
        return CartSnapshot.from_lines(raw, source_origin="payment-webhook").to_wire_lines()
