"""Sidecar process hosting the model server.

This module hides the design decisions about:
- Which binary serves the model, and its command line
- Port selection when the default port is taken
- Draining process output into the log
- Detecting that the process went away on its own
"""

import asyncio
import contextlib
import logging
import socket
from collections import deque
from collections.abc import Callable, Sequence

from .errors import ModelStartError

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "candle-vllm"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 1234
PORT_SEARCH_SPAN = 10
STDERR_TAIL_LINES = 20

ExitCallback = Callable[[int | None], None]


def is_port_available(port: int, host: str = DEFAULT_HOST) -> bool:
    """Return True if nothing accepts connections on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.5)
        return sock.connect_ex((host, port)) != 0


def find_available_port(
    start_port: int,
    span: int = PORT_SEARCH_SPAN,
    host: str = DEFAULT_HOST
) -> int:
    """Find the first free port in ``[start_port, start_port + span)``.

    Raises:
        ModelStartError: If every port in the range is taken
    """
    for port in range(start_port, start_port + span):
        if is_port_available(port, host):
            return port
    raise ModelStartError(
        f"no free port between {start_port} and {start_port + span - 1}"
    )


class SidecarProcess:
    """The model-server child process owned by this client.

    Only one process is kept. ``spawn`` is a no-op while it is running.
    When the process exits without ``terminate`` having been called, the
    exit callback receives its return code.
    """

    def __init__(
        self,
        binary: str = DEFAULT_BINARY,
        model_id: str = "unsloth/Qwen3-4B-GGUF",
        weight_file: str = "Qwen3-4B-Q4_0.gguf",
        arch: str = "qwen3",
        quant: str = "gguf",
        temperature: float = 0.0,
        penalty: float = 1.0,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        extra_args: Sequence[str] = (),
        on_exit: ExitCallback | None = None,
    ):
        self._binary = binary
        self._model_id = model_id
        self._weight_file = weight_file
        self._arch = arch
        self._quant = quant
        self._temperature = temperature
        self._penalty = penalty
        self._requested_port = port
        self._port = port
        self._host = host
        self._extra_args = list(extra_args)
        self._on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._terminating = False
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._last_returncode: int | None = None
        self._spawn_lock = asyncio.Lock()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """Port the server listens on (valid after ``spawn``)."""
        return self._port

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def set_exit_callback(self, callback: ExitCallback | None) -> None:
        """Set the callback fired when the process exits on its own."""
        self._on_exit = callback

    def build_args(self, port: int) -> list[str]:
        """Command line arguments for the model server."""
        return [
            "--port", str(port),
            "--model-id", self._model_id,
            "--weight-file", self._weight_file,
            self._arch,
            "--quant", self._quant,
            "--temperature", str(self._temperature),
            "--penalty", str(self._penalty),
            *self._extra_args,
        ]

    def exit_detail(self) -> str:
        """Describe how the process ended, with the tail of its stderr."""
        detail = f"sidecar '{self._binary}' exited with code {self._last_returncode}"
        if self._stderr_tail:
            detail += ": " + " | ".join(list(self._stderr_tail)[-3:])
        return detail

    async def spawn(self) -> int:
        """Start the model server if it is not running.

        Returns:
            The port the server was told to listen on

        Raises:
            ModelStartError: If no port is free or the binary cannot be run
        """
        async with self._spawn_lock:
            return await self._spawn()

    async def _spawn(self) -> int:
        if self.is_running:
            logger.info("Sidecar already running (pid %s)", self.pid)
            return self._port

        port = self._requested_port
        if not is_port_available(port, self._host):
            logger.warning("Default port %s busy, searching for a free one", port)
            port = find_available_port(port + 1, host=self._host)
        logger.info("Using port %s", port)

        self._stderr_tail.clear()
        self._last_returncode = None
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *self.build_args(port),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ModelStartError(f"failed to spawn sidecar '{self._binary}': {e}") from e

        logger.info("Sidecar pid: %s", process.pid)
        self._process = process
        self._port = port
        self._watch_task = asyncio.create_task(self._watch(process))
        return port

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        tail: deque[str] | None = None
    ) -> None:
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            logger.debug("[sidecar] %s", line)
            if tail is not None:
                tail.append(line)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._drain(process.stdout),
            self._drain(process.stderr, self._stderr_tail),
        )
        returncode = await process.wait()
        self._last_returncode = returncode
        logger.info("Sidecar exited with code %s", returncode)

        if self._process is not process:
            return
        self._process = None
        if not self._terminating and self._on_exit is not None:
            self._on_exit(returncode)

    async def terminate(self, grace: float = 5.0) -> None:
        """Stop the process: terminate, then kill after ``grace`` seconds."""
        process = self._process
        if process is None:
            return

        self._terminating = True
        try:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning("Sidecar did not exit after %ss, killing it", grace)
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
            if self._watch_task is not None:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._watch_task, timeout=grace)
        finally:
            self._process = None
            self._watch_task = None
            self._terminating = False
