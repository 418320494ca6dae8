"""
Core module for CartRelay.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- storage: localStorage-like key/value backends
- window: In-process browsing contexts with postMessage delivery
- api_client: HTTP client for the orders and snapshot endpoints
"""

from .exceptions import (
    CartRelayError,
    ConfigurationError,
    TransportError,
    StorageError,
    StorageQuotaExceededError,
    MessageDeliveryError,
    RemotePersistenceError,
    DataValidationError,
    InvalidCartLineError,
    UnknownMessageTypeError,
    InvalidPayloadError,
    SignatureVerificationError,
    OrderNotFoundError,
)
from .storage import Storage, MemoryStorage
from .window import Location, MessageEvent, Window, WILDCARD_ORIGIN

__all__ = [
    "CartRelayError",
    "ConfigurationError",
    "TransportError",
    "StorageError",
    "StorageQuotaExceededError",
    "MessageDeliveryError",
    "RemotePersistenceError",
    "DataValidationError",
    "InvalidCartLineError",
    "UnknownMessageTypeError",
    "InvalidPayloadError",
    "SignatureVerificationError",
    "OrderNotFoundError",
    "Storage",
    "MemoryStorage",
    "Location",
    "MessageEvent",
    "Window",
    "WILDCARD_ORIGIN",
]
