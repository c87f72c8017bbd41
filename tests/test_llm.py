"""Unit tests for the model service layer."""
import asyncio
import socket
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from hypothesis import given
from hypothesis import strategies as st

from sidechat.llm import (
    BackendError,
    BackendUnavailableError,
    ChatMessage,
    CompletionTimeoutError,
    InvalidPromptError,
    MalformedResponseError,
    ModelService,
    ModelServiceError,
    ModelStartError,
    OpenAICompatibleService,
    SidecarProcess,
    create_model_service,
)
from sidechat.llm.providers.openai_compat import trim_history
from sidechat.llm.sidecar import find_available_port, is_port_available
from sidechat.session import LifecycleStatus, Session

REQUEST = httpx.Request("POST", "http://127.0.0.1:1234/v1/chat/completions")


def completion(content="Hi there", choices=True):
    """Build an object shaped like a chat completion."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))] if choices else [],
        model="qwen3",
        usage=None,
    )


def mock_client(reply=None, error=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=reply if reply is not None else completion(),
        side_effect=error,
    )
    client.models.list = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


class FakeLauncher:
    """Stands in for SidecarProcess without spawning anything."""

    host = "127.0.0.1"

    def __init__(self, port=1234, dies=False):
        self.port = port
        self.dies = dies
        self.running = False
        self.spawn_calls = 0
        self.terminate_calls = 0
        self.on_exit = None

    @property
    def is_running(self):
        return self.running

    def set_exit_callback(self, callback):
        self.on_exit = callback

    async def spawn(self):
        self.spawn_calls += 1
        self.running = not self.dies
        return self.port

    async def terminate(self):
        self.terminate_calls += 1
        self.running = False

    def exit_detail(self):
        return "sidecar 'candle-vllm' exited with code 1: model file missing"


class SlowLauncher(FakeLauncher):
    """Launcher whose spawn yields to the loop before the process exists."""

    async def spawn(self):
        self.spawn_calls += 1
        await asyncio.sleep(0.01)
        self.running = True
        return self.port


class TestModelServiceInterface:
    """Tests for the ModelService ABC."""

    def test_model_service_is_abstract(self):
        """Test that ModelService cannot be instantiated directly."""
        with pytest.raises(TypeError):
            ModelService()  # type: ignore


class TestErrors:
    """Tests for error message prefixes."""

    @pytest.mark.parametrize(
        ("error_cls", "prefix"),
        [
            (ModelStartError, "Model start failed: "),
            (BackendUnavailableError, "Backend unavailable: "),
            (BackendError, "Backend error: "),
            (MalformedResponseError, "Malformed response: "),
            (CompletionTimeoutError, "Timed out: "),
            (InvalidPromptError, "Invalid prompt: "),
        ],
    )
    def test_prefix(self, error_cls, prefix):
        error = error_cls("detail")
        assert isinstance(error, ModelServiceError)
        assert str(error) == f"{prefix}detail"

    def test_backend_error_keeps_status(self):
        assert BackendError("Server error 503", status_code=503).status_code == 503


class TestTrimHistory:
    """Tests for history trimming."""

    @given(st.lists(st.integers(), max_size=50), st.integers(min_value=0, max_value=60))
    def test_keeps_most_recent(self, items, limit):
        """Property test: the result is the newest ``limit`` items in order."""
        messages = [ChatMessage(role="user", content=str(i)) for i in items]
        trimmed = trim_history(messages, limit)
        assert len(trimmed) == min(len(messages), limit)
        assert trimmed == messages[len(messages) - len(trimmed):]


class TestOpenAICompatibleService:
    """Tests for OpenAICompatibleService with a mocked client."""

    def test_initialization(self):
        service = OpenAICompatibleService(client=mock_client())
        assert service.model == "qwen3"
        assert service.base_url == "http://127.0.0.1:1234/v1/"
        assert service.is_running is False
        assert service.history == []

    def test_preamble_is_pinned_when_trimming(self):
        """Test that the system preamble survives history trimming."""
        service = OpenAICompatibleService(
            client=mock_client(), system_prompt="Be brief.", max_history=4
        )
        service._history = [
            ChatMessage(role="user", content="old question"),
            ChatMessage(role="assistant", content="old answer"),
            ChatMessage(role="user", content="recent question"),
            ChatMessage(role="assistant", content="recent answer"),
        ]

        messages = service.build_messages("new question")

        assert len(messages) == 4
        assert messages[0] == ChatMessage(role="system", content="Be brief.")
        assert [m.content for m in messages[1:]] == ["recent question", "recent answer", "new question"]

    @pytest.mark.asyncio
    async def test_trimmed_history_starts_with_a_user_turn(self):
        """Test that trimming drops whole exchanges, never half of one."""
        client = mock_client(completion("answer"))
        service = OpenAICompatibleService(client=client, system_prompt="Be brief.", max_history=6)

        for i in range(5):
            await service.complete(f"question {i}")

        assert len(service.history) == 4
        assert [m.role for m in service.history] == ["user", "assistant", "user", "assistant"]
        assert service.history[0].content == "question 3"

        sent = client.chat.completions.create.call_args.kwargs["messages"]
        assert [m["role"] for m in sent] == ["system", "user", "assistant", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_complete_records_exchange(self):
        client = mock_client(completion("Hi there"))
        service = OpenAICompatibleService(client=client, system_prompt="Be brief.")

        assert await service.complete("Hello") == "Hi there"

        sent = client.chat.completions.create.call_args.kwargs
        assert sent["model"] == "qwen3"
        assert sent["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]
        assert [m.content for m in service.history] == ["Hello", "Hi there"]

    @pytest.mark.asyncio
    async def test_history_sent_on_next_turn(self):
        client = mock_client(completion("Hi there"))
        service = OpenAICompatibleService(client=client)

        await service.complete("Hello")
        await service.complete("And again")

        sent = client.chat.completions.create.call_args.kwargs["messages"]
        assert [m["content"] for m in sent] == ["Hello", "Hi there", "And again"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    async def test_empty_prompt_rejected(self, prompt):
        client = mock_client()
        service = OpenAICompatibleService(client=client)
        with pytest.raises(InvalidPromptError):
            await service.complete(prompt)
        client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("raised", "expected", "text"),
        [
            (openai.APITimeoutError(request=REQUEST), CompletionTimeoutError, "Timed out"),
            (openai.APIConnectionError(request=REQUEST), BackendUnavailableError, "Backend unavailable"),
            (
                openai.InternalServerError(
                    "boom", response=httpx.Response(500, request=REQUEST), body=None
                ),
                BackendError,
                "Server error 500: boom",
            ),
            (openai.OpenAIError("backend crashed"), BackendError, "backend crashed"),
        ],
    )
    async def test_error_mapping(self, raised, expected, text):
        """Test that transport failures map onto the service errors."""
        service = OpenAICompatibleService(client=mock_client(error=raised))

        with pytest.raises(expected) as exc_info:
            await service.complete("Hello")

        assert text in str(exc_info.value)
        assert service.history == []

    @pytest.mark.asyncio
    async def test_status_code_is_kept(self):
        raised = openai.InternalServerError(
            "boom", response=httpx.Response(503, request=REQUEST), body=None
        )
        service = OpenAICompatibleService(client=mock_client(error=raised))
        with pytest.raises(BackendError) as exc_info:
            await service.complete("Hello")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply", [completion(choices=False), completion(content=None)]
    )
    async def test_malformed_reply(self, reply):
        service = OpenAICompatibleService(client=mock_client(reply))
        with pytest.raises(MalformedResponseError):
            await service.complete("Hello")
        assert service.history == []

    @pytest.mark.asyncio
    async def test_empty_content_is_a_valid_reply(self):
        service = OpenAICompatibleService(client=mock_client(completion("")))
        assert await service.complete("Hello") == ""

    @pytest.mark.asyncio
    async def test_reset_history(self):
        service = OpenAICompatibleService(client=mock_client())
        await service.complete("Hello")
        await service.reset_history()
        assert service.history == []

    @pytest.mark.asyncio
    async def test_start_attached_server(self):
        client = mock_client()
        service = OpenAICompatibleService(client=client)

        await service.start()

        assert service.is_running is True
        client.models.list.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_treats_status_error_as_ready(self):
        client = mock_client()
        client.models.list.side_effect = openai.NotFoundError(
            "no such route", response=httpx.Response(404, request=REQUEST), body=None
        )
        service = OpenAICompatibleService(client=client)

        await service.start()

        assert service.is_running is True

    @pytest.mark.asyncio
    async def test_start_attached_server_not_answering(self):
        client = mock_client()
        client.models.list.side_effect = openai.APIConnectionError(request=REQUEST)
        service = OpenAICompatibleService(client=client)

        with pytest.raises(ModelStartError) as exc_info:
            await service.start()

        assert "is not answering" in str(exc_info.value)
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_start_with_launcher_polls_until_ready(self):
        client = mock_client()
        client.models.list.side_effect = [
            openai.APIConnectionError(request=REQUEST),
            openai.APIConnectionError(request=REQUEST),
            [],
        ]
        launcher = FakeLauncher()
        service = OpenAICompatibleService(
            client=client, launcher=launcher, ready_poll_interval=0
        )

        await service.start()

        assert launcher.spawn_calls == 1
        assert client.models.list.await_count == 3
        assert service.is_running is True

        await service.start()
        assert launcher.spawn_calls == 1

    @pytest.mark.asyncio
    async def test_start_with_launcher_that_dies(self):
        launcher = FakeLauncher(dies=True)
        service = OpenAICompatibleService(client=mock_client(), launcher=launcher)

        with pytest.raises(ModelStartError) as exc_info:
            await service.start()

        assert "model file missing" in str(exc_info.value)
        assert launcher.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_start_with_launcher_times_out(self):
        client = mock_client()
        client.models.list.side_effect = openai.APIConnectionError(request=REQUEST)
        launcher = FakeLauncher()
        service = OpenAICompatibleService(
            client=client, launcher=launcher, ready_timeout=0.05, ready_poll_interval=0.01
        )

        with pytest.raises(ModelStartError) as exc_info:
            await service.start()

        assert "did not become ready" in str(exc_info.value)
        assert launcher.terminate_calls == 1

    @pytest.mark.asyncio
    async def test_process_exit_is_forwarded(self):
        launcher = FakeLauncher()
        service = OpenAICompatibleService(client=mock_client(), launcher=launcher)
        exits = []
        service.set_exit_callback(exits.append)
        await service.start()

        launcher.running = False
        launcher.on_exit(137)

        assert exits == [137]
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_close_terminates_launcher(self):
        client = mock_client()
        launcher = FakeLauncher()
        service = OpenAICompatibleService(client=client, launcher=launcher)
        await service.start()

        await service.close()

        assert launcher.terminate_calls == 1
        client.close.assert_awaited()
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_concurrent_starts_spawn_once(self):
        """Test that a second start waits for the first instead of spawning again."""
        launcher = SlowLauncher()
        service = OpenAICompatibleService(client=mock_client(), launcher=launcher)

        await asyncio.gather(service.start(), service.start())

        assert launcher.spawn_calls == 1
        assert service.is_running is True

    @pytest.mark.asyncio
    async def test_repeated_session_starts_leave_no_process_behind(self):
        launcher = SlowLauncher()
        service = OpenAICompatibleService(client=mock_client(), launcher=launcher)
        session = Session(service, greeting=None)

        first = session.request_start()
        second = session.request_start()
        statuses = await asyncio.gather(first, second)

        assert statuses == [LifecycleStatus.ONLINE, LifecycleStatus.ONLINE]
        assert launcher.spawn_calls == 1

        await session.close()
        assert launcher.is_running is False
        assert launcher.terminate_calls == 1


class TestModelServiceFactory:
    """Tests for the model service factory."""

    def test_create_sidecar_service(self):
        service = create_model_service("sidecar", binary="my-server", port=4321, model="qwen3")
        assert isinstance(service, OpenAICompatibleService)
        assert isinstance(service._launcher, SidecarProcess)
        assert service._launcher.port == 4321

    def test_create_openai_service_ignores_sidecar_options(self):
        service = create_model_service(
            "openai", base_url="http://localhost:8000/v1/", binary="ignored", port=1
        )
        assert isinstance(service, OpenAICompatibleService)
        assert service._launcher is None
        assert service.base_url == "http://localhost:8000/v1/"

    def test_kind_is_case_insensitive(self):
        assert isinstance(create_model_service("OpenAI"), OpenAICompatibleService)

    def test_unsupported_service_raises(self):
        with pytest.raises(ValueError, match="Unsupported model service"):
            create_model_service("llamafile")


class TestPortHelpers:
    """Tests for port probing."""

    def test_busy_port_is_detected(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]

            assert is_port_available(port) is False
            with pytest.raises(ModelStartError, match="no free port"):
                find_available_port(port, span=1)


class TestSidecarProcess:
    """Tests for SidecarProcess."""

    def test_build_args(self):
        sidecar = SidecarProcess(
            model_id="org/model", weight_file="w.gguf", arch="llama", extra_args=["--verbose"]
        )
        assert sidecar.build_args(1300) == [
            "--port", "1300",
            "--model-id", "org/model",
            "--weight-file", "w.gguf",
            "llama",
            "--quant", "gguf",
            "--temperature", "0.0",
            "--penalty", "1.0",
            "--verbose",
        ]

    def test_not_running_before_spawn(self):
        sidecar = SidecarProcess()
        assert sidecar.is_running is False
        assert sidecar.pid is None

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        sidecar = SidecarProcess(binary="/nonexistent/sidechat-model-server")
        with pytest.raises(ModelStartError, match="failed to spawn"):
            await sidecar.spawn()
        assert sidecar.is_running is False

    @pytest.mark.asyncio
    async def test_unexpected_exit_fires_callback(self):
        """Test that a server exiting on its own is reported with its code."""
        exited = asyncio.Event()
        codes = []

        def on_exit(code):
            codes.append(code)
            exited.set()

        # The interpreter rejects the server flags and exits with code 2
        sidecar = SidecarProcess(binary=sys.executable, on_exit=on_exit)
        await sidecar.spawn()
        await asyncio.wait_for(exited.wait(), timeout=10)

        assert codes == [2]
        assert sidecar.is_running is False
        assert "exited with code 2" in sidecar.exit_detail()

    @pytest.mark.asyncio
    async def test_terminate_does_not_fire_callback(self):
        class SleepingSidecar(SidecarProcess):
            def build_args(self, port):
                return ["-c", "import time; time.sleep(30)"]

        codes = []
        sidecar = SleepingSidecar(binary=sys.executable, on_exit=codes.append)
        await sidecar.spawn()
        assert sidecar.is_running is True

        await sidecar.terminate(grace=5.0)

        assert sidecar.is_running is False
        assert codes == []

    @pytest.mark.asyncio
    async def test_concurrent_spawns_start_one_process(self):
        class SleepingSidecar(SidecarProcess):
            def build_args(self, port):
                return ["-c", "import time; time.sleep(30)"]

        sidecar = SleepingSidecar(binary=sys.executable)
        with patch(
            "asyncio.create_subprocess_exec", wraps=asyncio.create_subprocess_exec
        ) as create:
            await asyncio.gather(sidecar.spawn(), sidecar.spawn())

        assert create.await_count == 1
        process = sidecar._process
        assert sidecar.is_running is True

        await sidecar.terminate(grace=5.0)

        assert process.returncode is not None
        assert sidecar.is_running is False
