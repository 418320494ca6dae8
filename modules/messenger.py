"""
Cross-window messenger.

Broadcasts PropagationMessages to every browsing context that might host
the receiving application, and dispatches inbound messages to handlers.

Targets of a broadcast:
    1. the current window (same-document listeners)
    2. the parent window, when embedded
    3. child frames whose origin matches a configured pattern

Trust boundary:
    Every post names the target's exact origin instead of "*", and the
    target must be in ``allowed_origins``. Inbound events are checked on
    ``event.origin`` before their ``type`` is even looked at. Putting "*"
    in ``allowed_origins`` restores the old wildcard behaviour and logs a
    warning.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from core.exceptions import CartRelayError, UnknownMessageTypeError
from core.window import MessageEvent, Window, WILDCARD_ORIGIN
from logging_config import get_logger
from models.cart import CartSnapshot
from models.message import MessageType, PropagationMessage


logger = get_logger(__name__)

MessageHandler = Callable[[PropagationMessage, MessageEvent], None]


class Subscription:
    """Handle returned by on_message(); cancel() detaches the listener."""

    def __init__(self, window: Window, listener):
        self._window = window
        self._listener = listener
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._window.remove_event_listener(self._listener)
            self.active = False


class CrossWindowMessenger:
    """
    Typed postMessage transport for one window.

    Args:
        window: The window this messenger runs in
        allowed_origins: Exact origins we may post to and accept from
        frame_origin_patterns: fnmatch patterns selecting child frames
    """

    def __init__(
        self,
        window: Window,
        allowed_origins: Sequence[str] = (),
        frame_origin_patterns: Sequence[str] = (),
    ):
        self._window = window
        self._allowed_origins = frozenset(allowed_origins)
        self._frame_patterns: Tuple[str, ...] = tuple(frame_origin_patterns)
        self._wildcard = WILDCARD_ORIGIN in self._allowed_origins

        if self._wildcard:
            logger.warning("Messenger configured with wildcard origin: any window can read cart broadcasts")

    @property
    def window(self) -> Window:
        return self._window

    def is_allowed_origin(self, origin: str) -> bool:
        return self._wildcard or origin == self._window.origin or origin in self._allowed_origins

    def _target_origin_for(self, target: Window) -> Optional[str]:
        if target is self._window or target.origin in self._allowed_origins:
            return target.origin
        if self._wildcard:
            return WILDCARD_ORIGIN
        return None

    def targets(self) -> List[Window]:
        """Windows a broadcast goes to, in delivery order."""
        targets = [self._window]
        if self._window.is_embedded:
            targets.append(self._window.parent)
        for frame in self._window.frames:
            if any(fnmatchcase(frame.origin, pattern) for pattern in self._frame_patterns):
                targets.append(frame)
        return targets

    def _post(self, target: Window, message: PropagationMessage) -> bool:
        target_origin = self._target_origin_for(target)
        if target_origin is None:
            logger.warning(f"Skipping {message.type.value} to non-allowed origin {target.origin}")
            return False
        try:
            return target.post_message(message.to_dict(), target_origin, source=self._window)
        except CartRelayError as e:
            logger.warning(f"Failed to post {message.type.value} to {target.origin}: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected error posting {message.type.value} to {target.origin}: {e}")
        return False

    def broadcast(self, message: PropagationMessage) -> int:
        """
        Send a message to every target.

        Returns:
            Number of targets that accepted the message
        """
        delivered = sum(1 for target in self.targets() if self._post(target, message))
        logger.debug(f"Broadcast {message.type.value} to {delivered} window(s)")
        return delivered

    def broadcast_cart(
        self,
        snapshot: CartSnapshot,
        source: str,
        redirect_url: Optional[str] = None,
        include_legacy_variant: bool = True,
    ) -> int:
        """Broadcast CART_DATA, and the ADD_TO_CART variant for older listeners."""
        delivered = self.broadcast(PropagationMessage.cart_data(snapshot, source, redirect_url))
        if include_legacy_variant:
            delivered += self.broadcast(PropagationMessage.add_to_cart(snapshot, source, redirect_url))
        return delivered

    def reply(self, event: MessageEvent, message: PropagationMessage) -> bool:
        """Send a message back to the window that sent ``event``."""
        if event.source is None:
            logger.debug(f"Cannot reply with {message.type.value}: event has no source window")
            return False
        return self._post(event.source, message)

    def on_message(
        self,
        handler: MessageHandler,
        types: Optional[Iterable[MessageType]] = None,
    ) -> Subscription:
        """
        Dispatch recognised inbound messages to ``handler``.

        Events from non-allowed origins, unknown types and types outside
        ``types`` (when given) are ignored.
        """
        wanted = frozenset(types) if types is not None else None

        def listener(event: MessageEvent) -> None:
            if not self.is_allowed_origin(event.origin):
                logger.warning(f"Ignoring message from non-allowed origin {event.origin!r}")
                return
            try:
                message = PropagationMessage.from_dict(event.data, origin=event.origin)
            except UnknownMessageTypeError:
                return
            if wanted is not None and message.type not in wanted:
                return
            try:
                handler(message, event)
            except Exception as e:
                logger.error(f"Handler for {message.type.value} failed: {e}", exc_info=True)

        self._window.add_event_listener(listener)
        return Subscription(self._window, listener)
