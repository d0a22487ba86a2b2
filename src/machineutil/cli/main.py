"""Main CLI implementation using Typer."""

import asyncio
import logging
from typing import Any, Callable, Coroutine

import typer
from rich.console import Console
from rich.markup import escape

from machineutil.engine.config import ConfigManager, STDIN
from machineutil.engine.runner import Mode, run
from machineutil.utils.logging import setup_logging


logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="machineutil",
    help="Reconcile systemd-nspawn machines against a desired-state document",
    add_completion=False,
)

# Console for error output
console = Console(stderr=True)


def _run_cli_command(handler: Callable[..., Coroutine[Any, Any, Any]], **kwargs: Any):
    """Helper to run an async command with error handling."""
    try:
        asyncio.run(handler(**kwargs))
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


async def reconcile(mode: Mode, source: str) -> None:
    """Load the document and run it in the given mode."""
    config = await ConfigManager(source).load()
    await run(config, mode)


@app.command()
def machineutil_command(
    mode: Mode = typer.Option(
        Mode.CREATE, "--mode", "-m", help="Mode to use: create, start, stop, destroy"
    ),
    config: str = typer.Option(
        STDIN, "--config", "-c", envvar="MACHINEUTIL_CONFIG",
        help="Config file to use, '-' for stdin",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug log"),
):
    """Create, start, stop or destroy the configured machines."""
    setup_logging("DEBUG" if debug else "INFO")
    logger.info(f"Starting with mode {mode.value}")
    _run_cli_command(reconcile, mode=mode, source=config)


def main():
    """Main entry point for CLI."""
    app()
