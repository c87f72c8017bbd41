"""Listener registry shared by the session components.

Hides how change notifications are delivered to subscribers.
"""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class Subscribers(Generic[T]):
    """Ordered set of listeners called synchronously with each new value.

    A listener that raises is logged and skipped; the remaining listeners
    still run and the caller's state change stands.
    """

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], None]] = []

    def add(self, listener: Callable[[T], None]) -> Unsubscribe:
        """Register a listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, value: T) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener %r failed", listener)

    def __len__(self) -> int:
        return len(self._listeners)
