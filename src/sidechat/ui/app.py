"""Main Textual TUI application.

Renders a Session and forwards user intents to it. The app holds no chat
state of its own: every redraw comes from a SessionSnapshot.
"""

import asyncio
import logging

from rich.markup import escape
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header

from ..log import ROOT_LOGGER, install_handler
from ..session import LifecycleStatus, Session, SessionSnapshot, TurnResult
from ..session.observable import Unsubscribe
from .callbacks import LogPanelHandler
from .config import LogLevel
from .styles import APP_CSS
from .themes import SIDECHAT_NIGHT
from .widgets import ChatHistoryWidget, ChatInputBar, DebugPanel, StatusPanel

logger = logging.getLogger(__name__)


class SidechatApp(App):
    """Textual TUI for chatting with the local model."""

    CSS = APP_CSS
    TITLE = "Sidechat"

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("ctrl+s", "start_model", "Start"),
        Binding("escape", "cancel_turn", "Cancel"),
        Binding("ctrl+k", "reset_context", "Forget"),
        Binding("ctrl+r", "copy_last_response", "Copy Response"),
        Binding("ctrl+d", "toggle_debug", "Log"),
    ]

    def __init__(
        self,
        session: Session,
        log_level: str | None = None,
        auto_start: bool = False,
    ) -> None:
        super().__init__()
        self._session = session
        self._log_level = log_level
        self._auto_start = auto_start
        self._unsubscribe: Unsubscribe | None = None
        self._log_handler: LogPanelHandler | None = None

    @property
    def session(self) -> Session:
        return self._session

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with Horizontal(id="main-panel"):
            yield ChatHistoryWidget(id="chat-history")
            yield DebugPanel(id="debug-panel", log_level=LogLevel.INFO)

        with Vertical(id="bottom-bar"):
            yield StatusPanel(id="status")
            yield ChatInputBar(id="chat-input-bar")

        yield Footer()

    def on_mount(self) -> None:
        """Called when app is mounted."""
        self.register_theme(SIDECHAT_NIGHT)
        self.theme = "sidechat-night"

        log_panel = self.query_one("#debug-panel", DebugPanel)
        self._log_handler = LogPanelHandler(log_panel, app=self)
        install_handler(self._log_handler, logging.DEBUG)
        if self._log_level is not None:
            log_panel.log_level = LogLevel.from_string(self._log_level)
            log_panel.show()
            log_panel.log_entry("app", f"Log panel enabled with level: {self._log_level.upper()}", LogLevel.INFO)

        self.sub_title = getattr(self._session.service, "model", type(self._session.service).__name__)

        self._unsubscribe = self._session.subscribe(self._render_snapshot)
        self._render_snapshot(self._session.snapshot())
        self.query_one("#chat-input-bar", ChatInputBar).focus_input()

        if self._auto_start:
            self.action_start_model()

    def on_unmount(self) -> None:
        """Stop listening to the session; the caller closes it."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._log_handler is not None:
            logging.getLogger(ROOT_LOGGER).removeHandler(self._log_handler)
            self._log_handler = None

    def _render_snapshot(self, snapshot: SessionSnapshot) -> None:
        self.query_one("#chat-history", ChatHistoryWidget).sync(snapshot.messages)
        self.query_one("#status", StatusPanel).update_status(
            snapshot.status, snapshot.pending_turn, len(snapshot.messages)
        )
        self.query_one("#chat-input-bar", ChatInputBar).set_state(
            can_send=snapshot.can_send, can_start=snapshot.can_start
        )

    def on_chat_input_bar_submitted(self, event: ChatInputBar.Submitted) -> None:
        """Hand the input to the session; clear the box only if it was accepted."""
        task = self._session.send_turn(event.value)
        if task is None:
            return
        self.query_one("#chat-input-bar", ChatInputBar).clear_input()
        self._watch_turn(task)

    def on_chat_input_bar_start_requested(self, event: ChatInputBar.StartRequested) -> None:
        self.action_start_model()

    def action_start_model(self) -> None:
        """Start the model unless a start is already running."""
        if self._session.status is LifecycleStatus.STARTING:
            self.notify("Model is already starting", severity="warning", timeout=2)
            return
        logger.info("Start requested from the UI")
        self._watch_start(self._session.request_start())

    @work(group="start")
    async def _watch_start(self, task: "asyncio.Task[LifecycleStatus]") -> None:
        try:
            status = await task
        except asyncio.CancelledError:
            return
        if status is LifecycleStatus.ONLINE:
            self.notify("Model ready", severity="information", timeout=3)
        else:
            self.notify("Model failed to start", severity="error", timeout=5)

    @work(group="turn")
    async def _watch_turn(self, task: "asyncio.Task[TurnResult]") -> None:
        try:
            result = await task
        except asyncio.CancelledError:
            return
        if not result.ok:
            self.notify(escape(result.reply.content[:80]), severity="error", timeout=5)

    def action_cancel_turn(self) -> None:
        """Cancel the turn in flight."""
        if self._session.cancel_turn():
            self.notify("Cancelled", severity="warning", timeout=2)

    async def action_reset_context(self) -> None:
        """Make the model forget earlier turns."""
        if await self._session.reset_context():
            self.notify("Model context cleared", timeout=2)
        else:
            self.notify("Wait for the reply first", severity="warning", timeout=2)

    def action_toggle_debug(self) -> None:
        """Toggle the log panel visibility."""
        log_panel = self.query_one("#debug-panel", DebugPanel)
        is_visible = log_panel.toggle()
        self.notify(f"Log panel {'shown' if is_visible else 'hidden'}", timeout=2)

    def action_copy_last_response(self) -> None:
        """Copy last assistant response to clipboard."""
        chat = self.query_one("#chat-history", ChatHistoryWidget)
        response = chat.get_last_response()
        if response:
            self.copy_to_clipboard(response)
            self.notify("Response copied")
        else:
            self.notify("No response to copy", severity="warning")


async def run_textual_tui(
    session: Session,
    log_level: str | None = None,
    auto_start: bool = False,
) -> None:
    """Run the Textual TUI.

    Args:
        session: Session to display
        log_level: Log level for panel (debug/info/warning/error), None to hide
        auto_start: Start the model as soon as the app is mounted
    """
    app = SidechatApp(session, log_level=log_level, auto_start=auto_start)
    try:
        await app.run_async()
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await session.close()
