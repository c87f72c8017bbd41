"""
Sidechat: a chat client for a language model hosted in a local sidecar process.

This package follows Parnas's information hiding principles,
where each module hides a specific design decision.
"""

__version__ = "0.1.0"

from .llm import ModelService, ModelServiceError, create_model_service
from .session import (
    LifecycleStatus,
    Message,
    Role,
    Session,
    SessionSnapshot,
    TurnOutcome,
    TurnResult,
)

__all__ = [
    "LifecycleStatus",
    "Message",
    "ModelService",
    "ModelServiceError",
    "Role",
    "Session",
    "SessionSnapshot",
    "TurnOutcome",
    "TurnResult",
    "create_model_service",
]
