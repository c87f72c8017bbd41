"""Turn orchestrator.

Coordinates one request/response cycle against the single model instance.
The pending-turn gate is the only concurrency control: at most one turn is
in flight for the whole session, and sends attempted meanwhile are dropped.
"""

import asyncio
import logging
from collections.abc import Callable

from ..llm import CompletionTimeoutError, ModelService
from .lifecycle import LifecycleStateMachine
from .models import Message, TurnOutcome, TurnResult
from .observable import Subscribers, Unsubscribe
from .store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT = 120.0


class TurnOrchestrator:
    """Runs chat turns: validate, record the prompt, ask the model, record the reply."""

    def __init__(
        self,
        service: ModelService,
        store: ConversationStore,
        lifecycle: LifecycleStateMachine,
        turn_timeout: float | None = DEFAULT_TURN_TIMEOUT,
    ) -> None:
        self._service = service
        self._store = store
        self._lifecycle = lifecycle
        self._turn_timeout = turn_timeout
        self._pending = False
        self._current: asyncio.Task[TurnResult] | None = None
        self._subscribers: Subscribers[bool] = Subscribers()

    @property
    def pending_turn(self) -> bool:
        """True exactly while a request is in flight."""
        return self._pending

    @property
    def current_task(self) -> "asyncio.Task[TurnResult] | None":
        return self._current

    def subscribe(self, listener: Callable[[bool], None]) -> Unsubscribe:
        """Call ``listener`` with the gate state whenever it flips."""
        return self._subscribers.add(listener)

    def _set_pending(self, pending: bool) -> None:
        if pending == self._pending:
            return
        self._pending = pending
        self._subscribers.notify(pending)

    def send_turn(self, raw_input: str) -> "asyncio.Task[TurnResult] | None":
        """Start a turn for ``raw_input``.

        Preconditions, checked in order: the trimmed input is non-empty, the
        model is online, no turn is pending. If any fails, nothing happens and
        None is returned. Otherwise the user message is appended before this
        method returns, and the caller may clear its input buffer.

        Returns:
            Task resolving to the TurnResult, or None if the input was not accepted
        """
        prompt = (raw_input or "").strip()
        if not prompt:
            return None
        if not self._lifecycle.is_online:
            logger.debug("Model not online, input dropped")
            return None
        if self._pending:
            logger.debug("Turn in progress, input dropped")
            return None

        loop = asyncio.get_running_loop()
        self._set_pending(True)
        self._store.append(Message.user(prompt))
        task = loop.create_task(self._run_turn(prompt))
        task.add_done_callback(self._on_turn_done)
        self._current = task
        return task

    async def _run_turn(self, prompt: str) -> TurnResult:
        logger.info("Turn started: '%s'", prompt[:50])
        try:
            try:
                text = await asyncio.wait_for(
                    self._service.complete(prompt), timeout=self._turn_timeout
                )
            except asyncio.CancelledError:
                outcome = TurnOutcome.CANCELLED
                reply = Message.system("Turn cancelled", error=True)
            except asyncio.TimeoutError:
                outcome = TurnOutcome.TIMED_OUT
                reply = self._error_message(
                    CompletionTimeoutError(f"no reply within {self._turn_timeout:g}s")
                )
            except Exception as e:
                outcome = TurnOutcome.FAILED
                reply = self._error_message(e)
            else:
                outcome = TurnOutcome.COMPLETED
                reply = Message.assistant(text)

            self._store.append(reply)
        finally:
            self._current = None
            self._set_pending(False)

        logger.info("Turn %s", outcome.value)
        return TurnResult(prompt=prompt, outcome=outcome, reply=reply)

    def _on_turn_done(self, task: "asyncio.Task[TurnResult]") -> None:
        if not task.cancelled():
            return
        # Cancelled before the turn body ran, so nothing released the gate
        if self._current is task:
            self._current = None
        self._store.append(Message.system("Turn cancelled", error=True))
        self._set_pending(False)

    @staticmethod
    def _error_message(error: BaseException) -> Message:
        logger.warning("Error asking model: %s", error)
        return Message.system(f"Error asking model: {error}", error=True)

    def cancel_turn(self) -> bool:
        """Cancel the turn in flight. Returns False if there is none."""
        if self._current is None or self._current.done():
            return False
        self._current.cancel()
        return True
