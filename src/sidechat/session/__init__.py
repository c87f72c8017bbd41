"""Chat session module for sidechat.

The controller core: conversation store, model lifecycle, turn orchestration.
"""

from .lifecycle import LifecycleStateMachine
from .models import (
    LifecycleStatus,
    Message,
    Role,
    SessionSnapshot,
    TurnOutcome,
    TurnResult,
)
from .orchestrator import TurnOrchestrator
from .session import DEFAULT_GREETING, Session
from .store import ConversationStore

__all__ = [
    "ConversationStore",
    "DEFAULT_GREETING",
    "LifecycleStateMachine",
    "LifecycleStatus",
    "Message",
    "Role",
    "Session",
    "SessionSnapshot",
    "TurnOrchestrator",
    "TurnOutcome",
    "TurnResult",
]
