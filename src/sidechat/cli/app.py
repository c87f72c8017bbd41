"""Main CLI application using Typer."""
import asyncio

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from ..log import configure_logging
from ..session import LifecycleStatus, Session
from ..ui.formatting import format_reply
from .providers import create_session, get_config

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="sidechat",
    help="Chat with a language model running on this machine",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

# Options shared by every command
BASE_URL_OPTION = typer.Option(
    None,
    "--base-url",
    "-u",
    help="Attach to a running OpenAI-compatible server instead of launching one"
)
BINARY_OPTION = typer.Option(
    None,
    "--binary",
    help="Model server executable (default: candle-vllm)"
)
MODEL_ID_OPTION = typer.Option(
    None,
    "--model-id",
    help="Model repository id passed to the model server"
)
PORT_OPTION = typer.Option(
    None,
    "--port",
    "-p",
    help="Port for the model server (the next free one is used if busy)"
)
START_TIMEOUT_OPTION = typer.Option(
    None,
    "--start-timeout",
    help="Seconds to wait for the model to come online"
)
TURN_TIMEOUT_OPTION = typer.Option(
    None,
    "--turn-timeout",
    "-t",
    help="Seconds to wait for each reply"
)
LOG_LEVEL_OPTION = typer.Option(
    None,
    "--log-level",
    "-l",
    help="Log level: debug (all), info, warning, or error"
)

EXIT_WORDS = ("exit", "quit", "q")


def _setup_logging(level: str | None) -> None:
    try:
        configure_logging(level or "warning")
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def _last_message_text(session: Session) -> str:
    last = session.store.last()
    return last.content if last is not None else "unknown error"


async def _start(session: Session, exit_on_failure: bool = True) -> bool:
    """Start the model and report whether it came online.

    With ``exit_on_failure`` a failed start exits with code 1; otherwise
    the error is printed and the caller may try again.
    """
    with console.status("[dim]Starting model, please wait...[/dim]"):
        status = await session.request_start()
    if status is LifecycleStatus.ONLINE:
        return True
    console.print(f"[red]{escape(_last_message_text(session))}[/red]")
    if exit_on_failure:
        raise typer.Exit(code=1)
    return False


@app.command(name="tui")
def tui_command(
    auto_start: bool = typer.Option(
        False,
        "--auto-start",
        "-a",
        help="Start the model as soon as the interface opens"
    ),
    base_url: str | None = BASE_URL_OPTION,
    binary: str | None = BINARY_OPTION,
    model_id: str | None = MODEL_ID_OPTION,
    port: int | None = PORT_OPTION,
    start_timeout: float | None = START_TIMEOUT_OPTION,
    turn_timeout: float | None = TURN_TIMEOUT_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
):
    """Launch interactive TUI chat interface."""
    config = get_config(
        console,
        base_url=base_url,
        binary=binary,
        model_id=model_id,
        port=port,
        start_timeout=start_timeout,
        turn_timeout=turn_timeout,
        log_level=log_level,
    )

    async def _tui():
        from ..ui import run_textual_tui

        session = create_session(config)
        await run_textual_tui(session, log_level=config.log_level, auto_start=auto_start)
        console.print("\n[dim]Goodbye![/dim]")

    try:
        asyncio.run(_tui())
    except KeyboardInterrupt:
        pass


@app.command()
def chat(
    base_url: str | None = BASE_URL_OPTION,
    binary: str | None = BINARY_OPTION,
    model_id: str | None = MODEL_ID_OPTION,
    port: int | None = PORT_OPTION,
    start_timeout: float | None = START_TIMEOUT_OPTION,
    turn_timeout: float | None = TURN_TIMEOUT_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
):
    """Interactive chat in the terminal, without the TUI."""
    config = get_config(
        console,
        base_url=base_url,
        binary=binary,
        model_id=model_id,
        port=port,
        start_timeout=start_timeout,
        turn_timeout=turn_timeout,
        log_level=log_level,
    )
    _setup_logging(config.log_level)

    async def _chat():
        async with create_session(config) as session:
            console.print("[bold cyan]Sidechat[/bold cyan]")
            for message in session.messages:
                console.print(f"[bold green]Assistant:[/bold green] {escape(message.content)}")
            await _start(session)
            console.print("[dim]Type 'exit', 'quit', or 'q' to leave, '/reset' to clear the model context[/dim]\n")

            while True:
                try:
                    # Read in a thread so the model server's output keeps draining
                    user_input = await asyncio.to_thread(console.input, "[bold yellow]You:[/bold yellow] ")
                except EOFError:
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                command = user_input.strip().lower()
                if not command:
                    continue
                if command in EXIT_WORDS:
                    console.print("[dim]Goodbye![/dim]")
                    break
                if command == "/reset":
                    await session.reset_context()
                    console.print(f"[dim]{escape(_last_message_text(session))}[/dim]\n")
                    continue
                if command == "/start":
                    if await _start(session, exit_on_failure=False):
                        console.print("[dim]Model ready[/dim]\n")
                    else:
                        console.print("[yellow]Type /start to try again.[/yellow]\n")
                    continue

                task = session.send_turn(user_input)
                if task is None:
                    console.print("[yellow]The model is not running. Type /start to start it.[/yellow]\n")
                    continue

                with console.status("[dim]Thinking...[/dim]"):
                    result = await task

                if result.ok:
                    console.print("[bold green]Assistant:[/bold green]")
                    console.print(Markdown(format_reply(result.reply.content)))
                    console.print()
                else:
                    console.print(f"[red]{escape(result.reply.content)}[/red]\n")

    try:
        asyncio.run(_chat())
    except KeyboardInterrupt:
        console.print("\n[dim]Goodbye![/dim]")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Question for the model"),
    base_url: str | None = BASE_URL_OPTION,
    binary: str | None = BINARY_OPTION,
    model_id: str | None = MODEL_ID_OPTION,
    port: int | None = PORT_OPTION,
    start_timeout: float | None = START_TIMEOUT_OPTION,
    turn_timeout: float | None = TURN_TIMEOUT_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
    raw: bool = typer.Option(
        False,
        "--raw",
        "-r",
        help="Print the reply exactly as returned, reasoning included"
    ),
):
    """Start the model, ask one question, print the reply and exit."""
    config = get_config(
        console,
        base_url=base_url,
        binary=binary,
        model_id=model_id,
        port=port,
        start_timeout=start_timeout,
        turn_timeout=turn_timeout,
        log_level=log_level,
    )
    _setup_logging(config.log_level)

    if not prompt.strip():
        console.print("[red]Error: the question is empty[/red]")
        raise typer.Exit(code=1)

    async def _ask():
        async with create_session(config) as session:
            await _start(session)
            task = session.send_turn(prompt)
            result = await task
            if not result.ok:
                console.print(f"[red]{escape(result.reply.content)}[/red]")
                raise typer.Exit(code=1)
            if raw:
                console.print(result.reply.content, markup=False, highlight=False)
            else:
                console.print(Markdown(format_reply(result.reply.content)))

    asyncio.run(_ask())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
