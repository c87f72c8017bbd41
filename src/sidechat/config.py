"""Configuration for sidechat.

Centralizes defaults and reads overrides from ``SIDECHAT_*`` environment
variables. Command line options override both.
"""

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "SIDECHAT_"


class ModelConfig(BaseModel):
    """How the model server is reached or launched."""

    model_config = ConfigDict(protected_namespaces=())

    base_url: str | None = Field(
        default=None,
        description="Attach to this OpenAI-compatible server instead of spawning the sidecar"
    )
    binary: str = Field(default="candle-vllm", description="Model server executable")
    model_id: str = Field(default="unsloth/Qwen3-4B-GGUF", description="Model repository id")
    weight_file: str = Field(default="Qwen3-4B-Q4_0.gguf", description="Quantized weight file")
    arch: str = Field(default="qwen3", description="Model architecture argument")
    quant: str = Field(default="gguf", description="Quantization format")
    served_model: str = Field(default="qwen3", description="Model name sent with each request")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=1234, ge=1, le=65535)
    sampling_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    penalty: float = Field(default=1.0, gt=0.0)
    max_history: int = Field(default=100, ge=2, description="Messages sent per request, preamble included")
    request_timeout: float | None = Field(default=None, gt=0)
    ready_timeout: float = Field(default=240.0, gt=0)

    @property
    def kind(self) -> str:
        """Factory kind: 'openai' when attaching, 'sidecar' otherwise."""
        return "openai" if self.base_url else "sidecar"

    def service_options(self) -> dict[str, Any]:
        """Keyword arguments for ``create_model_service``."""
        options: dict[str, Any] = {
            "model": self.served_model,
            "max_history": self.max_history,
            "request_timeout": self.request_timeout,
            "ready_timeout": self.ready_timeout,
        }
        if self.base_url:
            options["base_url"] = self.base_url
        else:
            options.update(
                binary=self.binary,
                model_id=self.model_id,
                weight_file=self.weight_file,
                arch=self.arch,
                quant=self.quant,
                host=self.host,
                port=self.port,
                sampling_temperature=self.sampling_temperature,
                penalty=self.penalty,
            )
        return options


class SessionConfig(BaseModel):
    """Timeouts applied by the session controller."""

    start_timeout: float = Field(default=300.0, gt=0)
    turn_timeout: float = Field(default=120.0, gt=0)


class AppConfig(BaseModel):
    """Complete application configuration."""

    llm: ModelConfig = Field(default_factory=ModelConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    log_level: str | None = Field(default=None, description="debug, info, warning or error")


# Field name -> environment variable suffix
_MODEL_ENV = {
    "base_url": "BASE_URL",
    "binary": "BINARY",
    "model_id": "MODEL_ID",
    "weight_file": "WEIGHT_FILE",
    "arch": "ARCH",
    "quant": "QUANT",
    "served_model": "MODEL",
    "host": "HOST",
    "port": "PORT",
    "sampling_temperature": "TEMPERATURE",
    "penalty": "PENALTY",
    "max_history": "MAX_HISTORY",
    "request_timeout": "REQUEST_TIMEOUT",
    "ready_timeout": "READY_TIMEOUT",
}

_SESSION_ENV = {
    "start_timeout": "START_TIMEOUT",
    "turn_timeout": "TURN_TIMEOUT",
}


def _pick(env: Mapping[str, str], names: Mapping[str, str]) -> dict[str, str]:
    return {
        field: env[ENV_PREFIX + suffix]
        for field, suffix in names.items()
        if env.get(ENV_PREFIX + suffix)
    }


def load_config(env: Mapping[str, str] | None = None) -> AppConfig:
    """Build the configuration from environment variables.

    Args:
        env: Variables to read (defaults to ``os.environ``)

    Returns:
        Validated configuration

    Raises:
        pydantic.ValidationError: If a variable holds an invalid value

    Environment variables:
        SIDECHAT_BASE_URL: Attach to a running server (skips the sidecar)
        SIDECHAT_BINARY: Model server executable (default: candle-vllm)
        SIDECHAT_MODEL_ID, SIDECHAT_WEIGHT_FILE, SIDECHAT_ARCH, SIDECHAT_QUANT: model selection
        SIDECHAT_MODEL: Model name sent with requests (default: qwen3)
        SIDECHAT_HOST, SIDECHAT_PORT: Where the sidecar listens (default: 127.0.0.1:1234)
        SIDECHAT_TEMPERATURE, SIDECHAT_PENALTY: Sidecar sampling options
        SIDECHAT_MAX_HISTORY: Messages sent per request (default: 100)
        SIDECHAT_REQUEST_TIMEOUT, SIDECHAT_READY_TIMEOUT: Transport and readiness timeouts
        SIDECHAT_START_TIMEOUT, SIDECHAT_TURN_TIMEOUT: Session timeouts
        SIDECHAT_LOG_LEVEL: Log level
    """
    env = os.environ if env is None else env
    return AppConfig(
        llm=ModelConfig(**_pick(env, _MODEL_ENV)),
        session=SessionConfig(**_pick(env, _SESSION_ENV)),
        log_level=env.get(ENV_PREFIX + "LOG_LEVEL") or None,
    )
