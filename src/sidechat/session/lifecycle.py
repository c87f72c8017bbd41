"""Lifecycle state machine for the model process.

States: offline -> starting -> online | error. ``error`` is recoverable:
a new start request re-enters ``starting``.
"""

import asyncio
import logging
from collections.abc import Callable

from ..llm import ModelService, ModelStartError
from .models import LifecycleStatus, Message
from .observable import Subscribers, Unsubscribe
from .store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_START_TIMEOUT = 300.0


class LifecycleStateMachine:
    """Tracks whether the model can take requests.

    Status changes are published synchronously to subscribers, so the
    presentation layer sees ``starting`` before the external call resolves.
    Start failures are reported as system error messages in the store.
    """

    def __init__(
        self,
        service: ModelService,
        store: ConversationStore,
        start_timeout: float | None = DEFAULT_START_TIMEOUT,
    ) -> None:
        self._service = service
        self._store = store
        self._start_timeout = start_timeout
        self._status = LifecycleStatus.OFFLINE
        self._subscribers: Subscribers[LifecycleStatus] = Subscribers()
        self._start_tasks: set[asyncio.Task[LifecycleStatus]] = set()

    @property
    def status(self) -> LifecycleStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._status is LifecycleStatus.ONLINE

    @property
    def start_tasks(self) -> "tuple[asyncio.Task[LifecycleStatus], ...]":
        """Start attempts still in flight."""
        return tuple(self._start_tasks)

    def subscribe(self, listener: Callable[[LifecycleStatus], None]) -> Unsubscribe:
        """Call ``listener`` with the new status on every change."""
        return self._subscribers.add(listener)

    def _set_status(self, status: LifecycleStatus) -> None:
        if status is self._status:
            return
        logger.info("Model status: %s -> %s", self._status.value, status.value)
        self._status = status
        self._subscribers.notify(status)

    def request_start(self) -> "asyncio.Task[LifecycleStatus]":
        """Start the model.

        Sets ``starting`` immediately, then runs the external start call in a
        task. Must be called from a running event loop. Repeated calls are
        harmless: each completion writes its own status, the last one wins.

        Returns:
            Task resolving to the status the start attempt ended in
        """
        loop = asyncio.get_running_loop()
        self._set_status(LifecycleStatus.STARTING)
        task = loop.create_task(self._run_start())
        self._start_tasks.add(task)
        task.add_done_callback(self._start_tasks.discard)
        return task

    async def _run_start(self) -> LifecycleStatus:
        try:
            await asyncio.wait_for(self._service.start(), timeout=self._start_timeout)
        except asyncio.CancelledError:
            self._set_status(LifecycleStatus.OFFLINE)
            raise
        except asyncio.TimeoutError:
            self._fail(ModelStartError(f"no answer within {self._start_timeout:g}s"))
        except Exception as e:
            self._fail(e)
        else:
            self._set_status(LifecycleStatus.ONLINE)
        return self._status

    def _fail(self, error: BaseException) -> None:
        logger.error("Error starting model: %s", error)
        self._set_status(LifecycleStatus.ERROR)
        self._store.append(Message.system(f"Error starting model: {error}", error=True))

    def handle_backend_exit(self, returncode: int | None) -> None:
        """React to the model process exiting while it was online."""
        if self._status is not LifecycleStatus.ONLINE:
            return
        logger.error("Model process exited (code %s)", returncode)
        self._set_status(LifecycleStatus.ERROR)
        self._store.append(
            Message.system(f"Model process exited (code {returncode}). Start it again to continue.", error=True)
        )

    def cancel_pending(self) -> None:
        """Cancel start attempts still in flight."""
        for task in list(self._start_tasks):
            task.cancel()
        # A task cancelled before it ran never resets the status itself
        if self._status is LifecycleStatus.STARTING:
            self._set_status(LifecycleStatus.OFFLINE)
