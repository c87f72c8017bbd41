"""Conversation store.

Append-only, ordered log of messages. Append order is the canonical order;
timestamps are informative only and never used for sorting.
"""

from collections.abc import Callable, Iterable

from .models import Message
from .observable import Subscribers, Unsubscribe


class ConversationStore:
    """Append-only message log with change notification."""

    def __init__(self, initial: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = list(initial)
        self._subscribers: Subscribers[tuple[Message, ...]] = Subscribers()

    def append(self, message: Message) -> int:
        """Add a message at the end of the log.

        Args:
            message: A fully formed message

        Returns:
            The new number of messages
        """
        if not isinstance(message, Message):
            raise TypeError(f"expected Message, got {type(message).__name__}")
        self._messages.append(message)
        length = len(self._messages)
        self._subscribers.notify(self.snapshot())
        return length

    def snapshot(self) -> tuple[Message, ...]:
        """Return the current messages in append order."""
        return tuple(self._messages)

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def subscribe(self, listener: Callable[[tuple[Message, ...]], None]) -> Unsubscribe:
        """Call ``listener`` with the new snapshot after every append."""
        return self._subscribers.add(listener)

    def __len__(self) -> int:
        return len(self._messages)
