import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from ..base import ModelService
from ..errors import (
    BackendError,
    BackendUnavailableError,
    CompletionTimeoutError,
    InvalidPromptError,
    MalformedResponseError,
    ModelServiceError,
    ModelStartError,
)
from ..models import ChatMessage, LLMResponse
from ..sidecar import ExitCallback, SidecarProcess

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:1234/v1/"
DEFAULT_MAX_HISTORY = 100


def trim_history(messages: Sequence[ChatMessage], limit: int) -> list[ChatMessage]:
    """Keep only the ``limit`` most recent messages."""
    if limit <= 0:
        return []
    if len(messages) <= limit:
        return list(messages)
    return list(messages[-limit:])


def _describe(error: BaseException) -> str:
    """Error text including the underlying cause (e.g. 'connection refused')."""
    text = str(error)
    cause = error.__cause__
    if cause is not None and str(cause) and str(cause) not in text:
        text = f"{text} ({cause})"
    return text


class OpenAICompatibleService(ModelService):
    """Model service speaking the OpenAI chat-completions protocol.

    Hidden design decisions:
    - AsyncOpenAI client setup (the local server ignores the API key)
    - Optional sidecar process ownership and readiness polling
    - Model-side conversation history with a pinned system preamble
    - Mapping of openai exceptions to ``ModelServiceError`` subclasses
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "qwen3",
        api_key: str = "EMPTY",
        system_prompt: str | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        temperature: float | None = None,
        max_tokens: int | None = None,
        request_timeout: float | None = None,
        ready_timeout: float = 240.0,
        ready_poll_interval: float = 1.0,
        launcher: SidecarProcess | None = None,
        client: AsyncOpenAI | None = None,
        **client_kwargs: Any
    ):
        """Initialize the service.

        Args:
            base_url: Server base URL, used when no launcher is attached
            model: Model name sent with each request
            api_key: Any non-empty string
            system_prompt: Preamble sent first on every request
            max_history: Maximum messages sent per request, preamble included
            temperature: Sampling temperature (None uses the server default)
            max_tokens: Maximum tokens to generate
            request_timeout: Transport timeout per request in seconds
            ready_timeout: How long ``start`` waits for a spawned server
            ready_poll_interval: Delay between readiness probes
            launcher: Sidecar to spawn on ``start``; None attaches to base_url
            client: Preconfigured client (mainly for tests)
            **client_kwargs: Additional kwargs for the AsyncOpenAI client
        """
        self._base_url = base_url
        self._model = model
        self._api_key = api_key
        self._system_prompt = system_prompt
        self._max_history = max_history
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._request_timeout = request_timeout
        self._ready_timeout = ready_timeout
        self._ready_poll_interval = ready_poll_interval
        self._launcher = launcher
        self._client_kwargs = client_kwargs
        self._client = client or self._make_client(base_url)
        self._history: list[ChatMessage] = []
        self._ready = False
        self._start_lock = asyncio.Lock()
        self._exit_callback: ExitCallback | None = None

        if self._launcher is not None:
            self._launcher.set_exit_callback(self._handle_exit)

    def _make_client(self, base_url: str) -> AsyncOpenAI:
        options: dict[str, Any] = {
            "api_key": self._api_key,
            "base_url": base_url,
            "max_retries": 0,
            **self._client_kwargs,
        }
        if self._request_timeout is not None:
            options["timeout"] = self._request_timeout
        return AsyncOpenAI(**options)

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def history(self) -> list[ChatMessage]:
        """Copy of the model-side history (preamble excluded)."""
        return list(self._history)

    @property
    def is_running(self) -> bool:
        if self._launcher is not None:
            return self._ready and self._launcher.is_running
        return self._ready

    def set_exit_callback(self, callback: ExitCallback | None) -> None:
        self._exit_callback = callback

    def _handle_exit(self, returncode: int | None) -> None:
        self._ready = False
        if self._exit_callback is not None:
            self._exit_callback(returncode)

    async def _repoint(self, base_url: str) -> None:
        if base_url == self._base_url:
            return
        logger.debug("Repointing client from %s to %s", self._base_url, base_url)
        await self._client.close()
        self._base_url = base_url
        self._client = self._make_client(base_url)

    async def start(self) -> None:
        """Spawn the sidecar if one is attached, then wait until it answers.

        Concurrent calls are serialized: a call made while another is still
        starting waits for it and returns early once the model is running.
        """
        async with self._start_lock:
            if self.is_running:
                logger.info("Model already running at %s", self._base_url)
                return

            if self._launcher is not None:
                port = await self._launcher.spawn()
                await self._repoint(f"http://{self._launcher.host}:{port}/v1/")

            try:
                await self._wait_until_ready()
            except ModelServiceError:
                if self._launcher is not None:
                    await self._launcher.terminate()
                raise
            self._ready = True

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._ready_timeout

        while True:
            if self._launcher is not None and not self._launcher.is_running:
                raise ModelStartError(self._launcher.exit_detail())
            try:
                await self._client.models.list()
                logger.info("Model server ready at %s", self._base_url)
                return
            except openai.APIStatusError as e:
                # The server answers but may not implement /models
                logger.debug("Readiness probe got status %s, treating as ready", e.status_code)
                return
            except openai.APIConnectionError as e:
                last_error = _describe(e)

            if self._launcher is None:
                raise ModelStartError(f"server at {self._base_url} is not answering: {last_error}")
            if loop.time() >= deadline:
                raise ModelStartError(
                    f"server did not become ready within {self._ready_timeout:g}s: {last_error}"
                )
            await asyncio.sleep(self._ready_poll_interval)

    def _history_limit(self) -> int:
        """Prior messages kept: whole user/assistant pairs that fit with the prompt."""
        budget = self._max_history - (1 if self._system_prompt else 0) - 1
        return max(budget - budget % 2, 0)

    def build_messages(self, prompt: str) -> list[ChatMessage]:
        """Messages sent for ``prompt``: preamble, recent history, prompt."""
        recent = [
            *trim_history(self._history, self._history_limit()),
            ChatMessage(role="user", content=prompt),
        ]
        if self._system_prompt:
            return [ChatMessage(role="system", content=self._system_prompt), *recent]
        return recent

    async def complete(self, prompt: str) -> str:
        """Generate a completion and record the exchange in the history.

        A failed request leaves the history untouched.
        """
        if not prompt or not prompt.strip():
            raise InvalidPromptError("prompt is empty")

        response = await self._chat_completion(self.build_messages(prompt))
        if response.usage:
            logger.debug("Token usage: %s", response.usage)

        self._history = trim_history(
            [
                *self._history,
                ChatMessage(role="user", content=prompt),
                ChatMessage(role="assistant", content=response.content),
            ],
            self._history_limit(),
        )
        return response.content

    async def _chat_completion(self, messages: list[ChatMessage]) -> LLMResponse:
        request_params: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in messages],
        }
        if self._temperature is not None:
            request_params["temperature"] = self._temperature
        if self._max_tokens is not None:
            request_params["max_tokens"] = self._max_tokens

        try:
            completion = await self._client.chat.completions.create(**request_params)
        except openai.APITimeoutError as e:
            raise CompletionTimeoutError(_describe(e)) from e
        except openai.APIConnectionError as e:
            raise BackendUnavailableError(_describe(e)) from e
        except openai.APIStatusError as e:
            raise BackendError(
                f"Server error {e.status_code}: {e.message}", status_code=e.status_code
            ) from e
        except openai.APIResponseValidationError as e:
            raise MalformedResponseError(str(e)) from e
        except openai.OpenAIError as e:
            raise BackendError(str(e)) from e

        choices = getattr(completion, "choices", None)
        if not choices:
            raise MalformedResponseError("response has no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            raise MalformedResponseError("response has no message content")

        usage = None
        if getattr(completion, "usage", None):
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens
            }

        return LLMResponse(
            content=content,
            model=getattr(completion, "model", None) or self._model,
            usage=usage
        )

    async def reset_history(self) -> None:
        """Forget previous turns; the preamble is kept."""
        self._history.clear()

    async def close(self) -> None:
        """Terminate the sidecar and close the client."""
        self._ready = False
        if self._launcher is not None:
            await self._launcher.terminate()
        await self._client.close()
