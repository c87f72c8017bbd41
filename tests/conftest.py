"""Pytest configuration and shared fixtures."""
import asyncio

import pytest

from sidechat.llm import ModelService
from sidechat.session import LifecycleStatus, Session


class FakeModelService(ModelService):
    """In-memory model service with scriptable outcomes.

    ``hold_start`` / ``hold_complete`` make the calls wait until the matching
    ``release_*`` method is called, so tests can observe intermediate state.
    """

    def __init__(
        self,
        reply: str = "Hi there",
        start_error: BaseException | None = None,
        complete_error: BaseException | None = None,
        hold_start: bool = False,
        hold_complete: bool = False,
    ) -> None:
        self.reply = reply
        self.start_error = start_error
        self.complete_error = complete_error
        self._start_gate = asyncio.Event() if hold_start else None
        self._complete_gate = asyncio.Event() if hold_complete else None
        self.prompts: list[str] = []
        self.start_calls = 0
        self.reset_calls = 0
        self.closed = False
        self.running = False
        self.exit_callback = None

    async def start(self) -> None:
        self.start_calls += 1
        if self._start_gate is not None:
            await self._start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._complete_gate is not None:
            await self._complete_gate.wait()
        if self.complete_error is not None:
            raise self.complete_error
        return self.reply

    async def reset_history(self) -> None:
        self.reset_calls += 1

    async def close(self) -> None:
        self.closed = True
        self.running = False

    @property
    def is_running(self) -> bool:
        return self.running

    def set_exit_callback(self, callback) -> None:
        self.exit_callback = callback

    def release_start(self) -> None:
        assert self._start_gate is not None
        self._start_gate.set()

    def release_complete(self) -> None:
        assert self._complete_gate is not None
        self._complete_gate.set()

    def crash(self, returncode: int = 1) -> None:
        """Simulate the model process exiting on its own."""
        self.running = False
        if self.exit_callback is not None:
            self.exit_callback(returncode)


@pytest.fixture
def fake_service():
    """Model service that answers "Hi there"."""
    return FakeModelService()


@pytest.fixture
def make_session():
    """Build a Session around a service, without a greeting."""
    def _make(service: ModelService, **kwargs) -> Session:
        kwargs.setdefault("greeting", None)
        return Session(service, **kwargs)
    return _make


async def start_online(session: Session) -> None:
    """Bring a session online, failing the test if the start fails."""
    status = await session.request_start()
    assert status is LifecycleStatus.ONLINE
