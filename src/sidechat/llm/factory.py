from typing import Any

from .base import ModelService
from .providers import OpenAICompatibleService
from .sidecar import SidecarProcess

# Keyword arguments that configure the sidecar rather than the client
SIDECAR_OPTIONS = (
    "binary",
    "model_id",
    "weight_file",
    "arch",
    "quant",
    "penalty",
    "port",
    "host",
    "extra_args",
)


def create_model_service(kind: str, **config: Any) -> ModelService:
    """Create a model service instance.

    This factory function hides the instantiation logic for the ways the
    model can be reached.

    Args:
        kind: Service type ('sidecar' or 'openai')
        **config: Service-specific configuration
            For sidecar (spawn the model server, then talk to it):
                - binary: str (default: 'candle-vllm')
                - model_id, weight_file, arch, quant: model selection
                - port: int (default: 1234; next free port if busy)
                - sampling_temperature, penalty: server sampling options
                - plus any OpenAI-compatible option below
            For openai (attach to a running OpenAI-compatible server):
                - base_url: str (default: 'http://127.0.0.1:1234/v1/')
                - model: str (default: 'qwen3')
                - system_prompt: str | None
                - max_history: int (default: 100)
                - request_timeout, ready_timeout: float

    Returns:
        Initialized model service instance

    Raises:
        ValueError: If the service type is not supported

    Examples:
        >>> service = create_model_service("sidecar", binary="candle-vllm", port=1234)

        >>> service = create_model_service(
        ...     "openai",
        ...     base_url="http://127.0.0.1:8000/v1/",
        ...     model="qwen3"
        ... )
    """
    kind_lower = kind.lower()

    if kind_lower == "sidecar":
        sidecar_config = {key: config.pop(key) for key in SIDECAR_OPTIONS if key in config}
        if "sampling_temperature" in config:
            sidecar_config["temperature"] = config.pop("sampling_temperature")
        launcher = SidecarProcess(**sidecar_config)
        return OpenAICompatibleService(launcher=launcher, **config)

    if kind_lower == "openai":
        for key in (*SIDECAR_OPTIONS, "sampling_temperature"):
            config.pop(key, None)
        return OpenAICompatibleService(**config)

    raise ValueError(
        f"Unsupported model service: {kind}. "
        f"Supported services: 'sidecar', 'openai'"
    )
