"""Terminal UI module for sidechat.

Provides a Textual-based TUI over a Session.

Module structure (Parnas principle - each module hides a design decision):
- widgets.py: Custom widgets (input history, status display, log rendering)
- styles.py: CSS styling (layout decisions)
- themes.py: Color palettes and theme configuration
- formatting.py: Cleanup of model output before display
- callbacks.py: Log routing (how the TUI receives log records)
- app.py: Application orchestration (user interaction flow)
"""

from .app import SidechatApp, run_textual_tui
from .callbacks import LogPanelHandler
from .config import LogLevel
from .widgets import ChatHistoryWidget, ChatInputBar, DebugPanel, StatusPanel

__all__ = [
    "ChatHistoryWidget",
    "ChatInputBar",
    "DebugPanel",
    "LogLevel",
    "LogPanelHandler",
    "SidechatApp",
    "StatusPanel",
    "run_textual_tui",
]
