"""
Custom exceptions for CartRelay.

Exception Hierarchy:
    CartRelayError (base)
    ├── ConfigurationError            - Missing/invalid settings (startup failure)
    ├── TransportError                - A propagation channel failed (always swallowed client-side)
    │   ├── StorageError
    │   │   └── StorageQuotaExceededError
    │   ├── MessageDeliveryError
    │   └── RemotePersistenceError
    ├── DataValidationError           - Data is unusable (client: absent data, server: 400)
    │   ├── InvalidCartLineError
    │   ├── UnknownMessageTypeError
    │   └── InvalidPayloadError
    ├── SignatureVerificationError    - Webhook signature missing/wrong (401)
    └── OrderNotFoundError            - Unknown order or snapshot reference (404)

Usage:
    Client-side code catches TransportError and DataValidationError locally,
    logs them and carries on: checkout must never be blocked by a channel.
    Server routes map exceptions to HTTP status codes via ``http_status``.
"""

from typing import Any, Dict, Optional


class CartRelayError(Exception):
    """
    Base exception for all CartRelay errors.

    Carries a human-readable message and an optional details dict
    for debugging and for JSON error responses.
    """

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe error body."""
        return {"error": self.message, "details": self.details}


# =============================================================================
# STARTUP ERRORS
# =============================================================================

class ConfigurationError(CartRelayError):
    """
    A required setting is missing or invalid.

    Raised at startup (fail fast) or when a request needs a secret that was
    never configured, such as the payment provider key.
    """

    def __init__(self, setting: str, message: Optional[str] = None):
        details = {
            "setting": setting,
            "resolution": f"Set {setting} in the environment or .env file",
        }
        super().__init__(message or f"{setting} is not configured", details)
        self.setting = setting


# =============================================================================
# TRANSPORT ERRORS - one propagation channel failed
# =============================================================================

class TransportError(CartRelayError):
    """Base class for failures of a single propagation channel."""

    def __init__(self, channel: str, message: str, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        error_details["channel"] = channel
        super().__init__(message, error_details)
        self.channel = channel


class StorageError(TransportError):
    """Reading or writing a storage key failed."""

    def __init__(self, key: str, message: str):
        super().__init__("storage", message, {"key": key})
        self.key = key


class StorageQuotaExceededError(StorageError):
    """
    Writing a storage key would exceed the storage quota.

    The browser equivalent is a QuotaExceededError from localStorage.setItem.
    """

    def __init__(self, key: str, required_bytes: int, quota_bytes: int):
        super().__init__(
            key,
            f"Storage quota exceeded writing '{key}': "
            f"need {required_bytes} bytes, quota is {quota_bytes}"
        )
        self.details.update({"required_bytes": required_bytes, "quota_bytes": quota_bytes})
        self.required_bytes = required_bytes
        self.quota_bytes = quota_bytes


class MessageDeliveryError(TransportError):
    """A postMessage to a target window could not be delivered."""

    def __init__(self, target_origin: str, message: str):
        super().__init__("message", message, {"target_origin": target_origin})
        self.target_origin = target_origin


class RemotePersistenceError(TransportError):
    """The remote orders endpoint rejected the request or was unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("remote", message, {"status_code": status_code})
        self.status_code = status_code


# =============================================================================
# DATA VALIDATION ERRORS
# =============================================================================

class DataValidationError(CartRelayError):
    """Data is malformed or incomplete."""

    http_status = 400


class InvalidCartLineError(DataValidationError):
    """A cart line lacks an identifier or a price, or has bad numbers."""

    def __init__(self, reason: str, raw: Any = None):
        super().__init__(f"Invalid cart line: {reason}", {"raw": repr(raw)[:200]})
        self.reason = reason


class UnknownMessageTypeError(DataValidationError):
    """A cross-window message carries a type this protocol does not know."""

    def __init__(self, message_type: Any):
        super().__init__(f"Unknown message type: {message_type!r}")
        self.message_type = message_type


class InvalidPayloadError(DataValidationError):
    """A server request body failed validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


# =============================================================================
# SERVER-SIDE ERRORS
# =============================================================================

class SignatureVerificationError(CartRelayError):
    """
    A webhook request carried no signature or a signature that does not
    match the HMAC of its raw body.

    This is the one hard rejection in the system: trusting an unsigned
    payment confirmation would let anyone mark orders as paid.
    """

    http_status = 401

    def __init__(self, reason: str):
        super().__init__("Invalid signature", {"reason": reason})
        self.reason = reason


class OrderNotFoundError(CartRelayError):
    """An order or snapshot reference does not exist (or has expired)."""

    http_status = 404

    def __init__(self, identifier: str, kind: str = "order"):
        super().__init__(f"{kind.capitalize()} not found: {identifier}", {"kind": kind})
        self.identifier = identifier
        self.kind = kind
