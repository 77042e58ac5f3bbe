"""
Superagent CLI - Sandbox commands.

Start, stop and inspect per-agent sandbox containers.
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from superagent.cli.tools import handle_error
from superagent.core.config import load_config
from superagent.core.exceptions import SuperagentError
from superagent.core.registry import create_registry
from superagent.core.runtime import check_all_runtimes
from superagent.core.sandbox import HealthStatus, SandboxStatus

console = Console()

_STATUS_STYLES = {
    SandboxStatus.RUNNING: "green",
    SandboxStatus.STARTING: "yellow",
    SandboxStatus.STOPPED: "dim",
}


def runtimes() -> None:
    """
    Show which container runtimes are installed and running.

    Examples:
        superagent runtimes
    """
    config = load_config()
    results = asyncio.run(check_all_runtimes(use_cache=False))

    table = Table(title="Container Runtimes")
    table.add_column("Runtime", style="cyan")
    table.add_column("Installed")
    table.add_column("Running")
    table.add_column("Available")

    for entry in results:
        table.add_row(
            entry.runner,
            "[green]yes[/green]" if entry.installed else "[red]no[/red]",
            "[green]yes[/green]" if entry.running else "[red]no[/red]",
            "[green]yes[/green]" if entry.available else "[red]no[/red]",
        )

    console.print(table)
    console.print(f"[dim]Configured runtime: {config.container.container_runner}[/dim]")

    if not any(entry.available for entry in results):
        console.print("[yellow]No container runtime is available[/yellow]")
        raise typer.Exit(1)


def start(
    agent_id: str = typer.Argument(..., help="Agent whose sandbox should run"),
) -> None:
    """
    Start an agent's sandbox, or reuse the running one.

    Builds the agent image when it is missing and waits until the
    control API answers /health.

    Examples:
        superagent start my-agent
    """

    async def _start() -> int | None:
        registry = await create_registry()
        console.print(f"[dim]Using {registry.runtime.name}[/dim]")
        await registry.manager.ensure_running(agent_id)
        info = await registry.manager.get_info(agent_id)
        return info.host_port

    try:
        host_port = asyncio.run(_start())
    except SuperagentError as e:
        handle_error(e)

    console.print(f"[green]Sandbox for {agent_id} is running[/green] on port {host_port}")


def stop(
    agent_id: str = typer.Argument(..., help="Agent whose sandbox should stop"),
) -> None:
    """
    Stop and remove an agent's sandbox.

    Examples:
        superagent stop my-agent
    """

    async def _stop() -> bool:
        registry = await create_registry()
        info = await registry.manager.get_info(agent_id)
        await registry.manager.stop(agent_id)
        return info.is_running

    try:
        was_running = asyncio.run(_stop())
    except SuperagentError as e:
        handle_error(e)

    if was_running:
        console.print(f"[green]Stopped sandbox for {agent_id}[/green]")
    else:
        console.print(f"[dim]Sandbox for {agent_id} was not running[/dim]")


def status(
    agent_ids: list[str] = typer.Argument(..., help="Agents to show"),
) -> None:
    """
    Show the status of agents' sandboxes.

    Examples:
        superagent status my-agent other-agent
    """

    async def _status() -> list:
        registry = await create_registry()
        return [await registry.manager.get_info(agent_id) for agent_id in agent_ids]

    try:
        infos = asyncio.run(_status())
    except SuperagentError as e:
        handle_error(e)

    table = Table(title="Sandboxes")
    table.add_column("Agent", style="cyan")
    table.add_column("Status")
    table.add_column("Port", justify="right")

    for info in infos:
        style = _STATUS_STYLES.get(info.status, "")
        table.add_row(
            info.agent_id,
            f"[{style}]{info.status.value}[/{style}]",
            str(info.host_port) if info.host_port else "-",
        )

    console.print(table)


def health(
    agent_id: str = typer.Argument(..., help="Agent whose sandbox to check"),
) -> None:
    """
    Check a running sandbox's /health endpoint and resource usage.

    Exits with status 1 when the sandbox is unhealthy or a check is critical.

    Examples:
        superagent health my-agent
    """

    async def _health() -> tuple:
        registry = await create_registry()
        client = registry.manager.get_client(agent_id)
        healthy = await client.is_healthy()
        if not healthy:
            return False, None, []
        stats = await client.get_stats()
        results = await registry.health_monitor.check_sandbox(client)
        return True, stats, results

    try:
        healthy, stats, results = asyncio.run(_health())
    except SuperagentError as e:
        handle_error(e)

    if not healthy:
        console.print(f"[red]Sandbox for {agent_id} is not healthy[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Sandbox for {agent_id} is healthy[/green]")
    if stats is not None:
        console.print(
            f"Memory: {stats.memory_percent:.1f}% "
            f"({stats.memory_usage_bytes / 1024 / 1024:.0f} MiB)  CPU: {stats.cpu_percent:.1f}%"
        )

    critical = False
    for result in results:
        color = "red" if result.status == HealthStatus.CRITICAL else "yellow"
        console.print(f"[{color}]{result.status.value}:[/{color}] {result.message}")
        critical = critical or result.status == HealthStatus.CRITICAL

    if critical:
        raise typer.Exit(1)
