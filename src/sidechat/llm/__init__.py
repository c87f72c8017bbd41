from .base import ModelService
from .errors import (
    BackendError,
    BackendUnavailableError,
    CompletionTimeoutError,
    InvalidPromptError,
    MalformedResponseError,
    ModelServiceError,
    ModelStartError,
)
from .factory import create_model_service
from .models import ChatMessage, LLMResponse
from .providers import OpenAICompatibleService
from .sidecar import SidecarProcess

__all__ = [
    "BackendError",
    "BackendUnavailableError",
    "ChatMessage",
    "CompletionTimeoutError",
    "InvalidPromptError",
    "LLMResponse",
    "MalformedResponseError",
    "ModelService",
    "ModelServiceError",
    "ModelStartError",
    "OpenAICompatibleService",
    "SidecarProcess",
    "create_model_service",
]
