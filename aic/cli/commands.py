"""CLI commands for aic."""

from __future__ import annotations

import asyncio
import os
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from aic import __logo__, __version__

app = typer.Typer(
    name="aic",
    help=f"{__logo__} - AI Code Connect. Bridge Claude Code and Gemini CLI.",
    no_args_is_help=False,
)
config_app = typer.Typer(help="Show or change aic configuration.")
app.add_typer(config_app, name="config")
console = Console()

LOG_ROTATION = "1 MB"


def version_callback(value: bool) -> None:
    if value:
        console.print(f"aic v{__version__}")
        raise typer.Exit()


def _configure_logging(debug: bool) -> None:
    from aic.config.loader import get_config_dir

    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    if debug:
        log_path = get_config_dir() / "aic.log"
        logger.add(log_path, level="DEBUG", rotation=LOG_ROTATION, enqueue=True)
        console.print(f"[dim]Debug log: {log_path}[/dim]")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    tool: str = typer.Option(None, "--tool", "-t", help="Tool to start with (default from config)."),
    oneshot: bool = typer.Option(
        False,
        "--oneshot",
        help="Run each message as a separate non-interactive invocation.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Write a debug log to ~/.aic/aic.log."),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Start the aic shell."""
    del version
    _configure_logging(debug)
    if ctx.invoked_subcommand is not None:
        return

    from aic.adapters.registry import build_registry
    from aic.config.loader import get_default_tool, load_config
    from aic.errors import AICError
    from aic.interactive import attach
    from aic.orchestrator import SessionOrchestrator
    from aic.shell import InteractiveShell

    config = load_config()
    registry = build_registry(config)
    selected = (tool or get_default_tool()).strip().lower()
    if selected not in registry:
        console.print(f"[red]Unknown tool '{selected}'. Expected: {', '.join(registry.names())}[/red]")
        raise typer.Exit(1)

    try:
        orchestrator = SessionOrchestrator(
            registry,
            default_tool=selected,
            mode="oneshot" if oneshot else "persistent",
            cwd=os.getcwd(),
            session_config=config.session,
            attach_handler=attach,
            progress=lambda message: console.status(message, spinner="dots"),
        )
    except AICError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    shell = InteractiveShell(orchestrator, console)
    orchestrator.set_notice_sink(shell.render_notice)
    try:
        asyncio.run(shell.run())
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
    finally:
        orchestrator.shutdown()


@app.command()
def tools() -> None:
    """List available AI tools and their status."""
    from aic.adapters.registry import build_registry
    from aic.config.loader import load_config

    registry = build_registry(load_config())
    console.print("Available tools:\n")
    for adapter in registry:
        status = "[green]✓ available[/green]" if adapter.is_available() else "[red]✗ not found[/red]"
        console.print(f"  {adapter.name:<10} {adapter.display_name:<15} {status}")


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""
    from aic.config.loader import get_config_path, get_default_tool, load_config

    config_path = get_config_path()
    config = load_config()
    console.print(f"Config: {config_path} {'[green]OK[/green]' if config_path.exists() else '[dim](defaults)[/dim]'}")
    console.print(f"Default tool: [cyan]{get_default_tool()}[/cyan]")

    table = Table("tool", "command", "default flags")
    for name, tool_cfg in config.tools.items():
        table.add_row(name, tool_cfg.command or name, " ".join(tool_cfg.default_flags or []))
    console.print(table)
    session = config.session
    console.print(f"Session: turn timeout {session.turn_timeout:g}s, {session.cols}x{session.rows}")


@config_app.command("default")
def config_default(tool: str = typer.Argument(..., help="claude or gemini")) -> None:
    """Set the tool aic starts with."""
    from aic.config.loader import set_default_tool

    ok, message = set_default_tool(tool)
    if not ok:
        console.print(f"[red]{message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]OK[/green] {message}")
