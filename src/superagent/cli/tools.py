"""
Shared helpers for CLI commands.
"""

import logging
import sys

import typer
from rich.console import Console

from superagent.core.exceptions import SuperagentError

console = Console()

_debug_mode = False


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging and full tracebacks
    """
    global _debug_mode
    _debug_mode = debug

    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def handle_error(error: Exception) -> None:
    """
    Print an error and exit with status 1.

    Superagent errors carry a readable message; anything else is shown with
    its type. With --debug the traceback is printed too.

    Raises:
        typer.Exit: Always
    """
    if isinstance(error, SuperagentError):
        console.print(f"[red]Error:[/red] {error}")
    else:
        console.print(f"[red]Error:[/red] {type(error).__name__}: {error}")

    if _debug_mode:
        console.print_exception()

    raise typer.Exit(1)
