"""Factory functions for the CLI.

Centralizes creation of the configuration, the model service and the
session from environment variables and command line overrides.
Hides configuration details from command implementations.
"""

from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from ..config import AppConfig, ModelConfig, SessionConfig, load_config
from ..llm import ModelService, create_model_service
from ..prompts import get_greeting, get_system_prompt
from ..session import Session

# Default console for output
_console = Console()

_SESSION_KEYS = ("start_timeout", "turn_timeout")


def get_config(console: Console | None = None, **overrides: Any) -> AppConfig:
    """Load the configuration and apply command line overrides.

    Args:
        console: Optional Rich console for output
        **overrides: Field values from the command line; None means "not given"

    Returns:
        Validated configuration

    Raises:
        typer.Exit: If a value is invalid
    """
    con = console or _console
    try:
        config = load_config()
        llm = config.llm.model_dump()
        session = config.session.model_dump()
        log_level = config.log_level
        for key, value in overrides.items():
            if value is None:
                continue
            if key in _SESSION_KEYS:
                session[key] = value
            elif key == "log_level":
                log_level = value
            else:
                llm[key] = value
        return AppConfig(
            llm=ModelConfig(**llm),
            session=SessionConfig(**session),
            log_level=log_level,
        )
    except ValidationError as e:
        con.print(f"[red]Error: invalid configuration[/red]\n{escape(str(e))}")
        raise typer.Exit(code=1)


def get_model_service(config: AppConfig) -> ModelService:
    """Create the model service described by ``config``.

    Attaches to ``base_url`` when one is configured, otherwise launches the
    model server as a child process.
    """
    return create_model_service(
        config.llm.kind,
        system_prompt=get_system_prompt(),
        **config.llm.service_options(),
    )


def create_session(config: AppConfig, service: ModelService | None = None) -> Session:
    """Create the session for one application run."""
    return Session(
        service or get_model_service(config),
        greeting=get_greeting(),
        start_timeout=config.session.start_timeout,
        turn_timeout=config.session.turn_timeout,
    )
