from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any


class ModelService(ABC):
    """Abstract base class for the service hosting the language model.

    This module hides the design decision of where the model runs and how it
    is reached. Implementations must handle:
    - Bringing the model process up (or checking an existing one)
    - Request/response format conversion
    - Mapping transport failures to ``ModelServiceError`` subclasses

    Implementations never retry. Every failure is raised to the caller,
    which decides once what to do with it.

    Supports async context manager protocol for proper resource cleanup:
        async with service:
            await service.start()
            reply = await service.complete("Hello")
        # Process terminated, client closed
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the model, or confirm it is already running.

        Raises:
            ModelServiceError: If the model cannot be brought up
        """

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Submit a prompt and return the full completion text.

        Args:
            prompt: Non-empty user prompt

        Returns:
            Completion text

        Raises:
            ModelServiceError: On timeout, backend error or malformed reply
        """

    @abstractmethod
    async def reset_history(self) -> None:
        """Forget the conversation context kept for the model."""

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections and stop owned processes."""

    @property
    def is_running(self) -> bool:
        """Whether the model is known to be up."""
        return False

    def set_exit_callback(self, callback: Callable[[int | None], None] | None) -> None:
        """Register a callback for when the model process exits on its own.

        Services that do not own a process never call it.
        """

    async def __aenter__(self) -> "ModelService":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
