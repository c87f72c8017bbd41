"""Logging setup.

Library modules only create loggers under the ``sidechat`` namespace; the
entry points decide where records go.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "sidechat"


def resolve_level(level: str | int) -> int:
    """Turn 'debug', 'INFO', 30, ... into a logging level number.

    Raises:
        ValueError: If the name is not a standard level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelNamesMapping().get(level.strip().upper())
    if value is None:
        raise ValueError(f"Unknown log level: {level}. Use debug, info, warning or error")
    return value


def install_handler(handler: logging.Handler, level: str | int = logging.WARNING) -> logging.Logger:
    """Route ``sidechat`` records to ``handler`` only, at ``level``."""
    logger = logging.getLogger(ROOT_LOGGER)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(resolve_level(level))
    logger.propagate = False
    return logger


def configure_logging(level: str | int = logging.WARNING, console: Console | None = None) -> logging.Logger:
    """Send ``sidechat`` logs to stderr through Rich."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return install_handler(handler, level)
