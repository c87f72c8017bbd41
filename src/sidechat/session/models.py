"""Data models for the chat session.

These models define the messages, lifecycle states and turn results seen by
the presentation layer, independent of how the model is hosted.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class LifecycleStatus(str, Enum):
    """Availability of the model process as tracked by this client."""

    OFFLINE = "offline"
    STARTING = "starting"
    ONLINE = "online"
    ERROR = "error"


class TurnOutcome(str, Enum):
    """How a turn ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class Message(BaseModel):
    """One entry of the conversation log. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role = Field(description="Who wrote the message")
    content: str = Field(description="Full message text")
    timestamp: datetime = Field(default_factory=datetime.now)
    error: bool = Field(default=False, description="True only for system messages reporting a failure")

    @model_validator(mode="after")
    def _error_only_on_system(self) -> "Message":
        if self.error and self.role is not Role.SYSTEM:
            raise ValueError("only system messages can be marked as errors")
        return self

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str, error: bool = False) -> "Message":
        return cls(role=Role.SYSTEM, content=content, error=error)


class TurnResult(BaseModel):
    """Result of one request/response cycle.

    Attributes:
        prompt: The trimmed user input
        outcome: How the turn ended
        reply: The assistant message, or the system message reporting the failure
    """

    model_config = ConfigDict(frozen=True)

    prompt: str
    outcome: TurnOutcome
    reply: Message

    @property
    def ok(self) -> bool:
        return self.outcome is TurnOutcome.COMPLETED


class SessionSnapshot(BaseModel):
    """Read-only view of the whole session, handed to subscribers."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()
    status: LifecycleStatus = LifecycleStatus.OFFLINE
    pending_turn: bool = False

    @computed_field
    @property
    def can_send(self) -> bool:
        return self.status is LifecycleStatus.ONLINE and not self.pending_turn

    @computed_field
    @property
    def can_start(self) -> bool:
        return self.status is not LifecycleStatus.STARTING
