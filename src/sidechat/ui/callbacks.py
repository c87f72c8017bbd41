"""Log routing into the TUI.

Hides how records emitted by the session and the model service reach the
log panel. Records may come from any thread, so UI updates go through
``call_from_thread`` when needed.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from textual.app import App

    from .widgets import DebugPanel


class LogPanelHandler(logging.Handler):
    """Logging handler that writes records to the DebugPanel."""

    def __init__(self, panel: "DebugPanel", app: "App | None" = None) -> None:
        super().__init__(level=logging.DEBUG)
        self.panel = panel
        self.app = app

    def _call_thread_safe(self, func: Any, *args: Any, **kwargs: Any) -> None:
        """Call a function in a thread-safe manner for UI updates."""
        if self.app is not None and self.app._thread_id != threading.get_ident():
            self.app.call_from_thread(func, *args, **kwargs)
        else:
            func(*args, **kwargs)

    @staticmethod
    def component(record: logging.LogRecord) -> str:
        """Short component name: the last part of the logger name."""
        return record.name.rsplit(".", 1)[-1]

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if record.exc_info and record.exc_info[1] is not None:
                message = f"{message}: {record.exc_info[1]}"
            self._call_thread_safe(
                self.panel.log_entry, self.component(record), message, record.levelno
            )
        except Exception:
            self.handleError(record)
