"""The chat session.

One Session is built per application run and handed explicitly to the
presentation layer. It owns the conversation store, the lifecycle state
machine and the turn orchestrator, and merges their notifications into a
single stream of SessionSnapshot values.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..llm import ModelService
from .lifecycle import DEFAULT_START_TIMEOUT, LifecycleStateMachine
from .models import LifecycleStatus, Message, SessionSnapshot, TurnResult
from .observable import Subscribers, Unsubscribe
from .orchestrator import DEFAULT_TURN_TIMEOUT, TurnOrchestrator
from .store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "Hello! Start the model, then ask me anything."


class Session:
    """Controller for one conversation with the local model.

    Usage:
        async with Session(service) as session:
            await session.request_start()
            task = session.send_turn("Hello")
            if task is not None:
                result = await task
    """

    def __init__(
        self,
        service: ModelService,
        greeting: str | None = DEFAULT_GREETING,
        start_timeout: float | None = DEFAULT_START_TIMEOUT,
        turn_timeout: float | None = DEFAULT_TURN_TIMEOUT,
    ) -> None:
        self._service = service
        self.store = ConversationStore([Message.assistant(greeting)] if greeting else [])
        self.lifecycle = LifecycleStateMachine(service, self.store, start_timeout=start_timeout)
        self.orchestrator = TurnOrchestrator(
            service, self.store, self.lifecycle, turn_timeout=turn_timeout
        )
        self._subscribers: Subscribers[SessionSnapshot] = Subscribers()
        self._closed = False

        self.store.subscribe(self._publish)
        self.lifecycle.subscribe(self._publish)
        self.orchestrator.subscribe(self._publish)
        service.set_exit_callback(self.lifecycle.handle_backend_exit)

    @property
    def service(self) -> ModelService:
        return self._service

    @property
    def status(self) -> LifecycleStatus:
        return self.lifecycle.status

    @property
    def pending_turn(self) -> bool:
        return self.orchestrator.pending_turn

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.store.snapshot()

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> SessionSnapshot:
        """Current messages, status and gate state in one read-only value."""
        return SessionSnapshot(
            messages=self.store.snapshot(),
            status=self.lifecycle.status,
            pending_turn=self.orchestrator.pending_turn,
        )

    def subscribe(self, listener: Callable[[SessionSnapshot], None]) -> Unsubscribe:
        """Call ``listener`` with a fresh snapshot after every change."""
        return self._subscribers.add(listener)

    def _publish(self, _change: Any) -> None:
        self._subscribers.notify(self.snapshot())

    def request_start(self) -> "asyncio.Task[LifecycleStatus]":
        """Start the model. See ``LifecycleStateMachine.request_start``."""
        return self.lifecycle.request_start()

    def send_turn(self, text: str) -> "asyncio.Task[TurnResult] | None":
        """Send user input. See ``TurnOrchestrator.send_turn``."""
        return self.orchestrator.send_turn(text)

    def cancel_turn(self) -> bool:
        """Cancel the turn in flight, if any."""
        return self.orchestrator.cancel_turn()

    async def reset_context(self) -> bool:
        """Make the model forget earlier turns.

        The visible log is not touched; a note is appended instead.
        Refused while a turn is pending.

        Returns:
            True if the context was reset
        """
        if self.orchestrator.pending_turn:
            return False
        await self._service.reset_history()
        self.store.append(Message.system("Model context cleared. Earlier messages are no longer sent to the model."))
        return True

    async def close(self) -> None:
        """Cancel in-flight work and release the model service."""
        if self._closed:
            return
        self._closed = True
        in_flight = [*self.lifecycle.start_tasks]
        if self.orchestrator.current_task is not None:
            in_flight.append(self.orchestrator.current_task)
        self.orchestrator.cancel_turn()
        self.lifecycle.cancel_pending()
        # Cancelled tasks finish unwinding before the service goes away
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        try:
            await self._service.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
        logger.info("Session closed")

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
