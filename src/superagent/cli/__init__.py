"""
Superagent CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import typer
from rich.console import Console

from superagent import __version__
from superagent.cli import sandbox, session
from superagent.cli.tools import setup_logging
from superagent.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_SANDBOX = "Manage Sandboxes"
PANEL_SESSION = "Work with Sessions"

app = typer.Typer(
    name="superagent",
    help="Run agents in per-agent container sandboxes",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    Superagent - container sandboxes for agents.

    Every agent gets its own container running the agent control API.
    Sandboxes start on demand and their session streams are persisted
    to JSONL logs under the data directory.

    Examples:
        superagent runtimes              # Which container runtimes are usable
        superagent start my-agent        # Start (or reuse) a sandbox
        superagent tail my-agent --new "Hello"
        superagent stop my-agent
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    setup_logging(debug)

    ctx.obj = {"debug": debug}


app.command(name="runtimes", rich_help_panel=PANEL_SANDBOX)(sandbox.runtimes)
app.command(name="start", rich_help_panel=PANEL_SANDBOX)(sandbox.start)
app.command(name="stop", rich_help_panel=PANEL_SANDBOX)(sandbox.stop)
app.command(name="status", rich_help_panel=PANEL_SANDBOX)(sandbox.status)
app.command(name="health", rich_help_panel=PANEL_SANDBOX)(sandbox.health)
app.command(name="tail", rich_help_panel=PANEL_SESSION)(session.tail)
app.command(name="log", rich_help_panel=PANEL_SESSION)(session.log)


@app.command()
def version() -> None:
    """Show the superagent version."""
    console.print(f"superagent version {__version__}")


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
