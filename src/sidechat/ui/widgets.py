"""Custom Textual widgets for the TUI.

Hides widget implementation details:
- Input history management
- Status bar formatting
- Log rendering and level filtering
- Chat message rendering
"""

from collections.abc import Sequence
from datetime import datetime

from rich.markup import escape
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.events import Click
from textual.message import Message as TextualMessage
from textual.widgets import Button, Markdown, RichLog, Static, TextArea

from ..session import LifecycleStatus, Message, Role
from .config import (
    INPUT_HISTORY_MAX_SIZE,
    LOG_MAX_MESSAGE_LENGTH,
    LOG_TIMESTAMP_FORMAT,
    MESSAGE_TIMESTAMP_FORMAT,
    STATUS_LABELS,
    LogLevel,
)
from .formatting import format_reply


class ClickableMessage(Vertical):
    """A chat message container that copies content when clicked."""

    def __init__(self, content: str, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._content = content

    def on_click(self, event: Click) -> None:
        """Copy message content to the system clipboard when clicked."""
        event.stop()
        try:
            import pyperclip
            pyperclip.copy(self._content)
            self.app.notify("Copied to clipboard", timeout=2)
        except Exception:
            # No system clipboard; fall back to Textual's OSC 52
            self.app.copy_to_clipboard(self._content)
            self.app.notify("Copied (terminal)", timeout=2)


class ChatInputBar(Horizontal):
    """Chat input bar with a TextArea, a Start button and a Send button.

    The bar never clears itself on submit: the app clears it once the
    session has accepted the input.
    """

    class Submitted(TextualMessage):
        """Message sent when the user submits input."""

        def __init__(self, value: str) -> None:
            super().__init__()
            self.value = value

    class StartRequested(TextualMessage):
        """Message sent when the user presses Start."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._history: list[str] = []
        self._history_index: int = -1

    def compose(self):
        text_area = TextArea(id="chat-input", show_line_numbers=False)
        text_area.cursor_blink = False
        yield text_area
        yield Button("Start", id="start-btn").with_tooltip("Start the model (Ctrl+S)")
        yield Button("Send", id="send-btn", variant="success", disabled=True).with_tooltip(
            "Submit message (Ctrl+J)"
        )

    def on_mount(self) -> None:
        text_area = self.query_one("#chat-input", TextArea)
        text_area.highlight_cursor_line = False
        text_area.focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send-btn":
            self._submit()
        elif event.button.id == "start-btn":
            self.post_message(self.StartRequested())

    def on_key(self, event) -> None:
        """Handle keyboard shortcuts.

        Note: ctrl+enter cannot work in terminals (terminal doesn't pass
        ctrl/shift modifiers with Enter). Use ctrl+j as the submit shortcut.
        """
        if event.key == "ctrl+j":
            self._submit()
            event.prevent_default()
            event.stop()
        elif event.key == "up" and self._is_cursor_at_start():
            self._navigate_history(-1)
            event.prevent_default()
            event.stop()
        elif event.key == "down" and self._is_cursor_at_end():
            self._navigate_history(1)
            event.prevent_default()
            event.stop()

    def _is_cursor_at_start(self) -> bool:
        text_area = self.query_one("#chat-input", TextArea)
        return text_area.cursor_location == (0, 0)

    def _is_cursor_at_end(self) -> bool:
        text_area = self.query_one("#chat-input", TextArea)
        lines = text_area.text.split("\n")
        last_row = len(lines) - 1
        last_col = len(lines[-1]) if lines else 0
        return text_area.cursor_location == (last_row, last_col)

    def _navigate_history(self, direction: int) -> None:
        if not self._history:
            return
        text_area = self.query_one("#chat-input", TextArea)
        if direction < 0:
            if self._history_index == -1:
                self._history_index = len(self._history) - 1
            elif self._history_index > 0:
                self._history_index -= 1
        else:
            if self._history_index < len(self._history) - 1:
                self._history_index += 1
            else:
                self._history_index = -1
                text_area.text = ""
                return
        text_area.text = self._history[self._history_index]

    def _submit(self) -> None:
        if self.query_one("#send-btn", Button).disabled:
            return
        text_area = self.query_one("#chat-input", TextArea)
        self.post_message(self.Submitted(text_area.text))

    @property
    def value(self) -> str:
        return self.query_one("#chat-input", TextArea).text

    @value.setter
    def value(self, text: str) -> None:
        self.query_one("#chat-input", TextArea).text = text

    def clear_input(self) -> None:
        """Clear the text area, remembering its content in the input history."""
        text_area = self.query_one("#chat-input", TextArea)
        value = text_area.text.strip()
        if value and (not self._history or self._history[-1] != value):
            self._history.append(value)
            del self._history[:-INPUT_HISTORY_MAX_SIZE]
        self._history_index = -1
        text_area.text = ""

    def set_state(self, can_send: bool, can_start: bool) -> None:
        """Enable or disable the buttons."""
        self.query_one("#send-btn", Button).disabled = not can_send
        self.query_one("#start-btn", Button).disabled = not can_start

    def focus_input(self) -> None:
        """Focus the text input."""
        self.query_one("#chat-input", TextArea).focus()


class StatusPanel(Static):
    """One-line status bar: model lifecycle, turn activity, message count."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._status = LifecycleStatus.OFFLINE
        self._pending = False
        self._message_count = 0

    def on_mount(self) -> None:
        self._update_display()

    def update_status(self, status: LifecycleStatus, pending: bool, message_count: int) -> None:
        self._status = status
        self._pending = pending
        self._message_count = message_count
        self._update_display()

    def _update_display(self) -> None:
        parts = [
            f"[bold cyan]Model:[/] {STATUS_LABELS[self._status.value]}",
            f"[bold magenta]Messages:[/] {self._message_count}",
        ]
        if self._pending:
            parts.append("[bold yellow]Thinking...[/] [dim](Esc to cancel)[/]")
        self.update("  ".join(parts))

    def get_plain_text(self) -> str:
        text = f"Model: {self._status.value}  Messages: {self._message_count}"
        if self._pending:
            text += "  Thinking..."
        return text


class DebugPanel(RichLog):
    """Log panel for real-time tracing with level filtering.

    Shows timestamped log records from all components.
    Hidden by default, shown with --log-level flag or toggled with Ctrl+D.
    """

    BORDER_TITLE = "Log"
    BORDER_SUBTITLE = "Trace log"

    COMPONENT_COLORS = {
        "app": "cyan",
        "session": "green",
        "lifecycle": "bright_green",
        "orchestrator": "bright_yellow",
        "store": "white",
        "observable": "white",
        "sidecar": "blue",
        "openai_compat": "magenta",
    }

    LEVEL_COLORS = {
        LogLevel.DEBUG: "dim white",
        LogLevel.INFO: "cyan",
        LogLevel.WARNING: "yellow",
        LogLevel.ERROR: "red",
    }

    def __init__(self, *args, log_level: int = LogLevel.DEBUG, **kwargs) -> None:
        super().__init__(
            *args,
            markup=True,
            highlight=False,
            auto_scroll=True,
            wrap=True,
            **kwargs
        )
        self._log_level = log_level

    @property
    def log_level(self) -> int:
        """Current log level threshold."""
        return self._log_level

    @log_level.setter
    def log_level(self, level: int) -> None:
        self._log_level = level
        self._update_subtitle()

    def _update_subtitle(self) -> None:
        if self.display:
            self.border_subtitle = f"Level: {LogLevel.name(self._log_level)}"
        else:
            self.border_subtitle = "Hidden"

    def on_mount(self) -> None:
        """Hide by default."""
        self.display = False

    def log_entry(self, component: str, message: str, level: int = LogLevel.DEBUG) -> None:
        """Add a log entry if it meets the current level threshold.

        Args:
            component: Component name (session, sidecar, orchestrator, ...)
            message: Log message
            level: Log level (LogLevel.DEBUG, INFO, WARNING, ERROR)
        """
        if level < self._log_level:
            return

        if len(message) > LOG_MAX_MESSAGE_LENGTH:
            message = message[:LOG_MAX_MESSAGE_LENGTH] + "..."

        timestamp = datetime.now().strftime(LOG_TIMESTAMP_FORMAT)
        level_color = self.LEVEL_COLORS.get(min(level, LogLevel.ERROR), "white")
        comp_color = self.COMPONENT_COLORS.get(component, "white")

        self.write(
            f"[dim]{timestamp}[/] "
            f"[{level_color}]{LogLevel.name(level):<5}[/] "
            f"[{comp_color}]\\[{component}][/] {escape(message)}"
        )

    def show(self) -> None:
        self.display = True
        self._update_subtitle()

    def hide(self) -> None:
        self.display = False
        self.border_subtitle = "Hidden"

    def toggle(self) -> bool:
        """Toggle visibility. Returns new state."""
        if self.display:
            self.hide()
            return False
        self.show()
        return True


class ChatHistoryWidget(VerticalScroll):
    """Scrollable chat history mirroring the session's message log.

    The log is append-only, so rendering only ever mounts the messages
    past the ones already shown.
    """

    BORDER_TITLE = "Chat"
    BORDER_SUBTITLE = "Conversation history"
    ALLOW_SELECT = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._messages: list[Message] = []

    @property
    def rendered_count(self) -> int:
        return len(self._messages)

    def sync(self, messages: Sequence[Message]) -> None:
        """Render the messages not displayed yet."""
        new_messages = list(messages[len(self._messages):])
        if not new_messages:
            return
        for msg in new_messages:
            self._messages.append(msg)
            self._render_message(msg)
        self.border_subtitle = f"{len(self._messages)} messages"
        self.call_after_refresh(self.scroll_end, animate=False)

    def get_last_response(self) -> str | None:
        """Get the last assistant response."""
        for msg in reversed(self._messages):
            if msg.role is Role.ASSISTANT:
                return msg.content
        return None

    def _render_message(self, msg: Message) -> None:
        if msg.role is Role.USER:
            prefix, icon, css_class = "You", ">", "user-message"
        elif msg.role is Role.ASSISTANT:
            prefix, icon, css_class = "Assistant", "<", "assistant-message"
        elif msg.error:
            prefix, icon, css_class = "Error", "!", "error-message"
        else:
            prefix, icon, css_class = "System", "*", "system-message"

        timestamp = msg.timestamp.strftime(MESSAGE_TIMESTAMP_FORMAT)
        header_text = f"{icon} {prefix} \\[{timestamp}]"

        container = ClickableMessage(content=msg.content, classes=f"chat-message {css_class}")
        container.compose_add_child(Static(header_text, classes="message-header"))

        if msg.role is Role.ASSISTANT:
            container.compose_add_child(Markdown(format_reply(msg.content), classes="message-content"))
        else:
            container.compose_add_child(Static(msg.content, markup=False, classes="message-content"))

        self.mount(container)
