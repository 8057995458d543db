"""Main entry point for ShellPilot."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from shellpilot import __version__
from shellpilot.config import Config, set_config
from shellpilot.confirmation import ConfirmationRequest
from shellpilot.logging import configure_logging, get_logger
from shellpilot.models import ChatEntry
from shellpilot.session import ChatSession

log = get_logger(__name__)

app = typer.Typer(help="ShellPilot - a terminal coding agent with guarded shell access")
console = Console()

_EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


def print_entry(entry: ChatEntry) -> None:
    """Plain rendering of one history entry."""
    if entry.kind == "user":
        console.print(f"[bold cyan]>[/bold cyan] {entry.content}")
    elif entry.kind == "assistant":
        if entry.content.strip():
            console.print(entry.content)
    elif entry.kind == "tool_call":
        name = entry.tool_call.name if entry.tool_call else "tool"
        console.print(f"[yellow]{name}[/yellow] {entry.content}")
    else:
        name = entry.tool_call.name if entry.tool_call else "tool"
        ok = entry.tool_result is None or entry.tool_result.success
        style = "green" if ok else "red"
        console.print(f"[{style}]{name}[/{style}] {entry.content}", highlight=False)


async def ask_confirmation(session: ChatSession, request: ConfirmationRequest) -> None:
    """Prompt the operator on a worker thread and resolve the pending request.

    An answer that arrives after the request was cancelled is discarded so it
    cannot resolve a later request.
    """
    console.print(Panel(request.content or request.target, title=request.operation, border_style="yellow"))
    answer = await asyncio.to_thread(
        Prompt.ask,
        "Proceed? [y]es / [n]o / [a]lways for this session",
        choices=["y", "n", "a"],
        default="y",
        console=console,
    )
    if session.broker.pending_request is not request:
        log.debug("Discarding answer for a confirmation that is no longer pending", operation=request.operation)
        return
    if answer == "n":
        feedback = await asyncio.to_thread(Prompt.ask, "Feedback (optional)", default="", console=console)
        if session.broker.pending_request is request:
            session.broker.reject(feedback)
    else:
        session.broker.confirm(dont_ask_again=answer == "a")


async def run_interactive(session: ChatSession) -> None:
    """Read operator messages until exit."""
    prompt_tasks: set[asyncio.Task[None]] = set()

    def _on_request(request: ConfirmationRequest) -> None:
        task = asyncio.get_running_loop().create_task(ask_confirmation(session, request))
        prompt_tasks.add(task)
        task.add_done_callback(prompt_tasks.discard)

    session.broker.on_request(_on_request)
    loop = asyncio.get_running_loop()
    console.print(f"[bold]ShellPilot[/bold] v{__version__}  model={session.config.model.model}  cwd={session.shell.cwd}")
    console.print("Type 'exit' to quit. Ctrl-C aborts the running turn.")

    try:
        while True:
            text = (await asyncio.to_thread(console.input, "[bold cyan]> [/bold cyan]")).strip()
            if not text:
                continue
            if text in _EXIT_COMMANDS:
                break
            if text == "/clear":
                session.clear()
                console.print("History cleared.")
                continue

            started = datetime.now()
            try:
                loop.add_signal_handler(signal.SIGINT, session.abort)
            except NotImplementedError:
                log.debug("SIGINT handler unavailable on this platform")
            try:
                outcome = await session.submit(text)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except NotImplementedError:
                    pass

            if any(not task.done() for task in prompt_tasks):
                # The prompt thread still owns stdin until it gets a line.
                console.print("[dim]Confirmation cancelled. Press Enter to continue.[/dim]")
                await asyncio.gather(*prompt_tasks, return_exceptions=True)

            for entry in session.history.entries():
                if entry.kind != "user" and entry.timestamp >= started:
                    print_entry(entry)
            if outcome.cancelled:
                console.print("[dim]Turn aborted.[/dim]")
            console.print(f"[dim]{outcome.token_count} tokens[/dim]")
    finally:
        for task in list(prompt_tasks):
            task.cancel()
        await session.close()


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    base_url: str = typer.Option("", "-u", "--base-url", help="Override API base URL"),
    directory: str = typer.Option("", "-d", "--directory", help="Starting working directory"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive ShellPilot session."""
    cfg = Config.from_yaml(Path(config)) if config else Config.load()
    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    if base_url:
        cfg.model.base_url = base_url
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    configure_logging(cfg)

    try:
        session = ChatSession(cfg, cwd=directory or None)
        asyncio.run(run_interactive(session))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"ShellPilot v{__version__}")


if __name__ == "__main__":
    app()
