"""
In-process browsing contexts.

The propagation protocol runs between browser windows: a storefront page,
the checkout app embedded in it as an iframe, parent windows, and the page
the user is finally redirected to. ``Window`` models just enough of a
browsing context for the protocol to run in Python:

    - an origin and a location (with navigation history)
    - a parent (a top-level window is its own parent, as in browsers)
    - child frames
    - ``post_message(data, target_origin, source)`` delivering a
      ``MessageEvent`` to every listener of the target window

Delivery semantics follow ``window.postMessage``:
    - a target origin that is neither "*" nor the window's own origin makes
      the browser drop the message silently
    - the data is structured-cloned (deep-copied) on delivery
    - an exception in one listener does not reach the sender or stop the
      other listeners
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from logging_config import get_logger
from .exceptions import MessageDeliveryError


logger = get_logger(__name__)

WILDCARD_ORIGIN = "*"

Listener = Callable[["MessageEvent"], None]


@dataclass(frozen=True)
class MessageEvent:
    """What a ``message`` listener receives."""

    data: Any
    origin: str
    source: Optional["Window"]


class Location:
    """Current URL of a window plus every URL it navigated to."""

    def __init__(self, href: str):
        self._href = href
        self._history: List[str] = [href]
        self._lock = threading.Lock()

    @property
    def href(self) -> str:
        return self._href

    @property
    def history(self) -> List[str]:
        with self._lock:
            return list(self._history)

    def assign(self, url: str) -> None:
        """Full page navigation."""
        with self._lock:
            self._href = url
            self._history.append(url)
        logger.info(f"Navigating to {url[:120]}{'...' if len(url) > 120 else ''}")


class Window:
    """
    A browsing context.

    Attributes:
        origin: Scheme + host (+ port), e.g. "https://shop.example.com"
        location: Current URL and navigation history
        frames: Child browsing contexts (iframes)
    """

    def __init__(self, origin: str, parent: Optional["Window"] = None, url: Optional[str] = None):
        self.origin = origin
        self._parent = parent
        self.location = Location(url or f"{origin}/")
        self.frames: List[Window] = []
        self.closed = False
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Window(origin={self.origin!r})"

    @property
    def parent(self) -> "Window":
        """The embedding window; a top-level window is its own parent."""
        return self._parent if self._parent is not None else self

    @property
    def is_embedded(self) -> bool:
        return self.parent is not self

    def open_frame(self, origin: str, url: Optional[str] = None) -> "Window":
        """Embed a child browsing context (an iframe) and return it."""
        frame = Window(origin, parent=self, url=url)
        self.frames.append(frame)
        return frame

    def close(self) -> None:
        self.closed = True

    def add_event_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_event_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def post_message(self, data: Any, target_origin: str, source: Optional["Window"] = None) -> bool:
        """
        Deliver ``data`` to this window's listeners.

        Args:
            data: Message payload (deep-copied on delivery)
            target_origin: Expected origin of this window, or "*"
            source: The sending window (becomes ``event.source``)

        Returns:
            True if delivered, False if dropped because of an origin mismatch

        Raises:
            MessageDeliveryError: The window is closed or the data cannot be cloned
        """
        if self.closed:
            raise MessageDeliveryError(target_origin, f"Window {self.origin} is closed")

        if target_origin not in (WILDCARD_ORIGIN, self.origin):
            logger.debug(f"Dropped message for {target_origin}: window origin is {self.origin}")
            return False

        try:
            cloned = copy.deepcopy(data)
        except Exception as e:
            raise MessageDeliveryError(target_origin, f"Message could not be cloned: {e}")

        event = MessageEvent(
            data=cloned,
            origin=source.origin if source is not None else "",
            source=source,
        )

        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Message listener in {self.origin} raised: {e}", exc_info=True)

        return True
