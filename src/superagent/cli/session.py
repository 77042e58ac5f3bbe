"""
Superagent CLI - Session commands.

Follow a sandbox session live, or read back its persisted log.
"""

import asyncio
import json
from typing import Any

import typer
from rich.console import Console

from superagent.cli.tools import handle_error
from superagent.core.config import load_config
from superagent.core.exceptions import SuperagentError
from superagent.core.registry import create_registry
from superagent.core.sandbox import CreateSessionOptions, StreamEvent
from superagent.core.stream import SessionLog

console = Console()

# Notifications that end a turn the CLI started
_TURN_END = ("session_idle", "session_error")


def _render(message: dict[str, Any], debug: bool) -> None:
    """Print one viewer notification."""
    kind = message.get("type")

    if kind == "stream_delta":
        console.print(message.get("text", ""), end="", markup=False, highlight=False)
    elif kind == "tool_use_start":
        console.print(f"\n[dim]→ {message.get('toolName')}[/dim]")
    elif kind == "tool_result" and message.get("isError"):
        console.print(f"[red]Tool {message.get('toolUseId')} failed[/red]")
    elif kind == "secret_request":
        console.print(f"\n[yellow]Agent requests secret {message.get('secretName')}[/yellow]")
    elif kind == "connected_account_request":
        console.print(f"\n[yellow]Agent requests a {message.get('toolkit')} account[/yellow]")
    elif kind == "schedule_task_request":
        console.print(
            f"\n[yellow]Agent wants to schedule ({message.get('scheduleType')} "
            f"{message.get('scheduleExpression')}): {message.get('prompt')}[/yellow]"
        )
    elif kind == "session_error":
        console.print(f"\n[red]Error:[/red] {message.get('error')}")
    elif kind == "session_idle":
        console.print()
    elif debug:
        event = message.get("event")
        detail = f" {event.get('type')}" if isinstance(event, dict) else ""
        console.print(f"[dim]{kind}{detail}[/dim]")


def tail(
    ctx: typer.Context,
    agent_id: str = typer.Argument(..., help="Agent owning the session"),
    session_id: str | None = typer.Argument(
        None,
        help="Sandbox session to follow (omit with --new)",
    ),
    new: str | None = typer.Option(
        None,
        "--new",
        "-n",
        help="Create a session with this initial message and follow it",
    ),
    send: str | None = typer.Option(
        None,
        "--send",
        "-s",
        help="Send this message to the session before following",
    ),
) -> None:
    """
    Follow a session's stream, persisting every frame to its log.

    Starts the agent's sandbox if needed. When the command starts a turn
    (--new or --send) it exits once the session goes idle; otherwise it
    follows until Ctrl+C.

    Examples:
        superagent tail my-agent --new "Summarise the README"
        superagent tail my-agent 6f1c... --send "Now the tests"
        superagent tail my-agent 6f1c...
    """
    debug = ctx.obj.get("debug", False) if ctx.obj else False

    if new is None and session_id is None:
        console.print("[red]Error:[/red] Give a session id or --new MESSAGE")
        raise typer.Exit(1)

    async def _tail() -> None:
        registry = await create_registry()
        persister = registry.persister
        try:
            client = await registry.manager.ensure_running(agent_id)

            if new is not None:
                session = await client.create_session(CreateSessionOptions(initial_message=new))
                sid = session.id
                console.print(f"[dim]Session {sid}[/dim]")
            elif session_id is not None:
                sid = session_id
            else:
                raise typer.Exit(1)

            viewer = persister.add_viewer(sid)
            await persister.subscribe_to_session(sid, client, sid, agent_id)

            started_turn = new is not None or send is not None
            if started_turn:
                persister.mark_session_active(sid, agent_id)
            if send is not None:
                await client.send_message(sid, send)

            async for message in viewer:
                _render(message, debug)
                if started_turn and message.get("type") in _TURN_END:
                    break
        finally:
            await persister.shutdown()

    try:
        asyncio.run(_tail())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped following session[/yellow]")
        raise typer.Exit(0)
    except SuperagentError as e:
        handle_error(e)


def log(
    session_id: str = typer.Argument(..., help="Session whose log to show"),
    raw: bool = typer.Option(
        False,
        "--json",
        help="Print the raw JSON frames",
    ),
) -> None:
    """
    Show a session's persisted stream log.

    Examples:
        superagent log 6f1c...
        superagent log 6f1c... --json
    """
    config = load_config()
    session_log = SessionLog(config.sessions_dir())

    try:
        if not session_log.exists(session_id):
            console.print(f"[red]Error:[/red] No log for session {session_id}")
            raise typer.Exit(1)
        frames = session_log.read_all(session_id)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    for frame in frames:
        if raw:
            console.print(json.dumps(frame), markup=False, highlight=False)
            continue
        event = StreamEvent.from_frame(frame, session_id)
        subtype = frame.get("subtype")
        suffix = f" ({subtype})" if subtype else ""
        console.print(f"[dim]{event.timestamp.isoformat(timespec='seconds')}[/dim] {event.type}{suffix}")
