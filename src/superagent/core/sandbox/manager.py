"""
Container lifecycle manager.

SandboxManager owns the "is this agent's sandbox up?" question. It starts
sandboxes on demand (build image if missing, allocate a host port, launch,
wait for /health), stops them, and hands out SandboxClient facades. All
state it reports is re-derived from the runtime adapter on each read; the
only thing it remembers is which starts are in flight.

Concurrency rules:
- Concurrent ensure_running calls for one agent share a single start task,
  so they produce one build, one port and one launch.
- Image builds are exclusive per image tag across agents.
- stop closes the agent's stream connections before stopping the container.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any

import httpx

from superagent.core.config import SuperagentConfig, get_effective_api_key
from superagent.core.exceptions import (
    ContainerLaunchError,
    HealthTimeoutError,
    ImageBuildError,
    RuntimeCommandError,
    SandboxStartError,
)
from superagent.core.runtime import LaunchSpec, RuntimeAdapter

from .client import SandboxClient, StreamConnector
from .environment import build_sandbox_env, format_env_flags
from .models import SandboxInfo, SandboxStatus
from .ports import allocate_host_port

logger = logging.getLogger(__name__)

CONTAINER_NAME_PREFIX = "superagent-"

# Per-agent environment overrides (e.g. connected-account tokens)
EnvProvider = Callable[[str], Awaitable[Mapping[str, str | None]]]

# Receives {"type": "agent_status_changed", "agentSlug": ..., "status": ...}
StatusListener = Callable[[dict[str, Any]], None]


def container_name(agent_id: str) -> str:
    """Return the runtime container name for an agent."""
    return f"{CONTAINER_NAME_PREFIX}{agent_id}"


class SandboxManager:
    """
    Starts, stops and inspects per-agent sandbox containers.

    Example:
        >>> manager = SandboxManager(config, runtime)
        >>> client = await manager.ensure_running("a1")
        >>> info = await manager.get_info("a1")
        >>> info.status
        <SandboxStatus.RUNNING: 'running'>
    """

    def __init__(
        self,
        config: SuperagentConfig,
        runtime: RuntimeAdapter,
        *,
        env_provider: EnvProvider | None = None,
        status_listener: StatusListener | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        stream_connector: StreamConnector | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            config: Loaded configuration
            runtime: Adapter for the selected container runtime
            env_provider: Optional coroutine returning per-agent env overrides
            status_listener: Optional callback for agent status changes
            transport: Optional httpx transport handed to every client
            stream_connector: Optional WebSocket connector handed to every client
        """
        self.config = config
        self.runtime = runtime
        self.env_provider = env_provider
        self.status_listener = status_listener
        self._transport = transport
        self._stream_connector = stream_connector
        self._clients: dict[str, SandboxClient] = {}
        self._starts: dict[str, asyncio.Task[None]] = {}
        self._image_locks: dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Clients and status
    # =========================================================================

    def get_client(self, agent_id: str) -> SandboxClient:
        """
        Get (or create) the facade for an agent's sandbox.

        The client does not start anything; its calls fail with
        SandboxNotRunningError until the sandbox is up.
        """
        client = self._clients.get(agent_id)
        if client is None:
            client = SandboxClient(
                agent_id,
                self.runtime,
                container_name(agent_id),
                request_timeout=self.config.container.request_timeout,
                max_frame_bytes=self.config.container.stream_max_frame_bytes,
                transport=self._transport,
                stream_connector=self._stream_connector,
            )
            self._clients[agent_id] = client
        return client

    def remove_client(self, agent_id: str) -> None:
        """Forget an agent's cached facade."""
        self._clients.pop(agent_id, None)

    async def get_info(self, agent_id: str) -> SandboxInfo:
        """
        Derive the current status of an agent's sandbox.

        Args:
            agent_id: Agent to query

        Returns:
            SandboxInfo; 'starting' only while this process has a start in flight
        """
        info = await self.runtime.inspect(container_name(agent_id))
        if info.running:
            return SandboxInfo(
                agent_id=agent_id,
                status=SandboxStatus.RUNNING,
                host_port=info.host_port,
            )
        if agent_id in self._starts:
            return SandboxInfo(agent_id=agent_id, status=SandboxStatus.STARTING)
        return SandboxInfo(agent_id=agent_id, status=SandboxStatus.STOPPED)

    def is_starting(self, agent_id: str) -> bool:
        """Whether a start for this agent is in flight."""
        return agent_id in self._starts

    async def running_agent_ids(self) -> list[str]:
        """
        List agents known to this manager whose sandbox is running.

        Returns:
            Agent ids, in the order their clients were created
        """
        running = []
        for agent_id in list(self._clients):
            info = await self.runtime.inspect(container_name(agent_id))
            if info.running:
                running.append(agent_id)
        return running

    async def has_running_agents(self) -> bool:
        """Whether any known agent's sandbox is running."""
        for agent_id in list(self._clients):
            info = await self.runtime.inspect(container_name(agent_id))
            if info.running:
                return True
        return False

    # =========================================================================
    # Start
    # =========================================================================

    async def ensure_running(
        self,
        agent_id: str,
        env: Mapping[str, str | None] | None = None,
    ) -> SandboxClient:
        """
        Make sure an agent's sandbox is running and healthy.

        Returns immediately when the runtime already reports it running.
        Otherwise joins the in-flight start for this agent, or begins one.

        Args:
            agent_id: Agent whose sandbox should run
            env: Call-site environment overrides (highest precedence)

        Returns:
            The agent's SandboxClient

        Raises:
            SandboxStartError: If the start fails (build, port, launch, health)
        """
        client = self.get_client(agent_id)

        task = self._starts.get(agent_id)
        if task is None:
            info = await self.runtime.inspect(container_name(agent_id))
            if info.running:
                return client
            # Another caller may have begun a start while we inspected
            task = self._starts.get(agent_id)
            if task is None:
                task = asyncio.create_task(self._start(agent_id, env))
                self._starts[agent_id] = task
                task.add_done_callback(lambda t: self._forget_start(agent_id, t))
        else:
            logger.debug(f"Joining in-flight start for agent {agent_id}")

        # Shield so one cancelled caller does not cancel the shared start
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise SandboxStartError(agent_id, "Sandbox start was cancelled") from None
            raise
        return client

    def _forget_start(self, agent_id: str, task: asyncio.Task[None]) -> None:
        if self._starts.get(agent_id) is task:
            del self._starts[agent_id]
        # Retrieve the exception so an unawaited failure is not reported twice
        if not task.cancelled():
            task.exception()

    async def _start(self, agent_id: str, env: Mapping[str, str | None] | None) -> None:
        name = container_name(agent_id)
        container = self.config.container
        image = container.image_for(agent_id)
        client = self.get_client(agent_id)

        try:
            await self._ensure_image(agent_id, image)

            workspace_dir = self.config.agent_workspace_dir(agent_id)
            workspace_dir.mkdir(parents=True, exist_ok=True)

            host_port = await allocate_host_port(
                self.runtime,
                agent_id,
                base_port=container.base_port,
                scan_limit=container.port_scan_limit,
            )

            # A stopped container with the same name would block the launch
            await self.runtime.remove_container(name)

            launch_env = await self._build_env(agent_id, env)
            spec = LaunchSpec(
                name=name,
                image=image,
                host_port=host_port,
                internal_port=container.internal_port,
                workspace_dir=workspace_dir,
                cpus=container.resource_limits.cpu,
                memory=container.resource_limits.memory,
                env=launch_env,
            )
            logger.debug(
                f"Launching {name} with {self.runtime.command} on port {host_port}: "
                f"{format_env_flags(launch_env)}"
            )

            try:
                container_id = await self.runtime.run_container(spec)
            except RuntimeCommandError as e:
                raise ContainerLaunchError(agent_id, str(e), command=e.command) from e

            logger.info(f"Started container {container_id[:12] or name} on port {host_port}")

            healthy = await client.wait_for_healthy(
                timeout=container.health_timeout,
                interval=container.health_poll_interval,
            )
            if not healthy:
                # Don't leave an unhealthy container that later reads as running
                await self.runtime.stop_container(name)
                raise HealthTimeoutError(agent_id, container.health_timeout)

        except SandboxStartError as e:
            logger.error(f"Failed to start sandbox for agent {agent_id}: {e}")
            raise
        except asyncio.CancelledError:
            logger.info(f"Start of sandbox for agent {agent_id} cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error starting sandbox for agent {agent_id}")
            raise SandboxStartError(agent_id, f"Failed to start sandbox: {e}") from e

        logger.info(f"Container {name} is now running on port {host_port}")
        self._notify(agent_id, SandboxStatus.RUNNING)

    async def _ensure_image(self, agent_id: str, image: str) -> None:
        lock = self._image_locks.setdefault(image, asyncio.Lock())
        async with lock:
            if await self.runtime.image_exists(image):
                return

            context = Path(self.config.container.build_context)
            if not context.is_dir():
                raise ImageBuildError(
                    agent_id,
                    f"Image {image} not found and build context {context} does not exist",
                    image=image,
                )
            try:
                await self.runtime.build_image(image, str(context))
            except RuntimeCommandError as e:
                raise ImageBuildError(agent_id, str(e), image=image) from e

    async def _build_env(
        self,
        agent_id: str,
        env: Mapping[str, str | None] | None,
    ) -> dict[str, str]:
        agent_env: Mapping[str, str | None] = {}
        if self.env_provider is not None:
            agent_env = await self.env_provider(agent_id)
        return build_sandbox_env(get_effective_api_key(self.config), agent_env, env)

    # =========================================================================
    # Stop
    # =========================================================================

    async def stop(self, agent_id: str) -> None:
        """
        Stop and remove an agent's sandbox.

        Stream connections opened through the agent's client are closed
        first. Idempotent; stopping a sandbox that never started is a no-op.

        Args:
            agent_id: Agent whose sandbox should stop
        """
        task = self._starts.get(agent_id)
        if task is not None and not task.done():
            task.cancel()

        client = self._clients.get(agent_id)
        if client is not None:
            await client.close_streams()

        name = container_name(agent_id)
        info = await self.runtime.inspect(name)
        if not info.running and client is None and task is None:
            return

        await self.runtime.stop_container(name)
        logger.info(f"Stopped container {name}")
        if info.running:
            self._notify(agent_id, SandboxStatus.STOPPED)

    async def stop_all(self) -> None:
        """Stop every sandbox this manager knows about; one failure does not stop the rest."""
        for agent_id in list(self._clients):
            try:
                await self.stop(agent_id)
            except Exception:
                logger.exception(f"Failed to stop container for agent {agent_id}")
        self._clients.clear()

    def stop_sync(self, agent_id: str) -> None:
        """
        Stop an agent's sandbox without an event loop.

        For process shutdown paths. Each runtime call is bounded by the
        configured timeout and every error is ignored.
        """
        name = container_name(agent_id)
        self.runtime.stop_container_sync(
            name,
            self.config.container.stop_sync_timeout,
            self.config.container.remove_sync_timeout,
        )
        logger.info(f"Stopped container {name} (sync)")

    def stop_all_sync(self) -> None:
        """Synchronously stop every known sandbox. Safe when nothing runs."""
        for agent_id in list(self._clients):
            try:
                self.stop_sync(agent_id)
            except Exception:
                logger.exception(f"Failed to stop container for agent {agent_id} (sync)")
        self._clients.clear()

    def _notify(self, agent_id: str, status: SandboxStatus) -> None:
        if self.status_listener is None:
            return
        try:
            self.status_listener(
                {"type": "agent_status_changed", "agentSlug": agent_id, "status": status.value}
            )
        except Exception:
            logger.exception(f"Status listener failed for agent {agent_id}")
