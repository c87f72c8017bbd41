"""Theme definitions for the TUI.

Hides the color palette. To add a theme, define it here and register it
in the app.
"""

from textual.theme import Theme

# Dark palette derived from Catppuccin Mocha
SIDECHAT_NIGHT = Theme(
    name="sidechat-night",
    primary="#89b4fa",
    secondary="#cba6f7",
    accent="#f9e2af",
    foreground="#cdd6f4",
    background="#11111b",
    success="#a6e3a1",
    warning="#fab387",
    error="#f38ba8",
    surface="#1e1e2e",
    panel="#181825",
    dark=True,
    variables={
        "border": "#45475a",
        "border-blurred": "#313244",
        "scrollbar": "#313244",
        "scrollbar-hover": "#45475a",
        "scrollbar-active": "#89b4fa",
        "scrollbar-background": "#181825",
        "footer-key-foreground": "#f9e2af",
        "text-muted": "#6c7086",
        "text-disabled": "#45475a",
        "input-selection-background": "#89b4fa 30%",
    },
)
