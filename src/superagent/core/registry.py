"""
Process-wide wiring of the sandbox core.

Builds the runtime adapter, lifecycle manager, stream persister and their
collaborators once, and hands the Registry to consumers (CLI, HTTP routes,
schedulers) instead of reaching for module-level singletons.

Usage:
    >>> registry = await create_registry()
    >>> client = await registry.manager.ensure_running("a1")
    >>> ...
    >>> await registry.shutdown()
"""

import logging

import httpx

from superagent.core.config import SuperagentConfig, load_config
from superagent.core.idle import AutoSleepMonitor, LastActivityLookup
from superagent.core.runtime import RuntimeAdapter, select_runtime
from superagent.core.sandbox import HealthMonitor, SandboxManager
from superagent.core.sandbox.client import StreamConnector
from superagent.core.sandbox.manager import EnvProvider
from superagent.core.stream import ScheduleTaskHandler, SessionLog, SessionStreamPersister

logger = logging.getLogger(__name__)


class Registry:
    """
    Holds the long-lived sandbox core objects for one process.

    Attributes:
        config: Loaded configuration
        runtime: Selected container runtime adapter
        manager: Sandbox lifecycle manager
        persister: Session stream persister
        health_monitor: Resource health checks
        auto_sleep: Idle monitor, when an activity lookup was provided
    """

    def __init__(
        self,
        config: SuperagentConfig,
        runtime: RuntimeAdapter,
        manager: SandboxManager,
        persister: SessionStreamPersister,
        health_monitor: HealthMonitor,
        auto_sleep: AutoSleepMonitor | None = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.manager = manager
        self.persister = persister
        self.health_monitor = health_monitor
        self.auto_sleep = auto_sleep

    async def shutdown(self) -> None:
        """
        Graceful shutdown: stop the idle monitor, close every subscription
        and viewer, then stop every sandbox this process started.
        """
        if self.auto_sleep is not None:
            await self.auto_sleep.stop()
        await self.persister.shutdown()
        try:
            await self.manager.stop_all()
            logger.info("All containers stopped")
        except Exception:
            logger.exception("Error stopping containers")

    def shutdown_sync(self) -> None:
        """Abrupt shutdown with no event loop: bounded, blocking container stops."""
        self.manager.stop_all_sync()
        self.persister.session_log.close()


async def create_registry(
    config: SuperagentConfig | None = None,
    *,
    runtime: RuntimeAdapter | None = None,
    env_provider: EnvProvider | None = None,
    last_activity: LastActivityLookup | None = None,
    schedule_task_handler: ScheduleTaskHandler | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    stream_connector: StreamConnector | None = None,
    start_auto_sleep: bool = False,
) -> Registry:
    """
    Build the sandbox core for this process.

    Args:
        config: Configuration (defaults to load_config())
        runtime: Runtime adapter (defaults to select_runtime() on the configured runner)
        env_provider: Per-agent environment overrides for sandbox launches
        last_activity: Latest session activity per agent; enables auto-sleep
        schedule_task_handler: Persists schedule_task requests from sessions
        transport: httpx transport for sandbox HTTP calls (tests)
        stream_connector: WebSocket connector for sandbox streams (tests)
        start_auto_sleep: Start the idle monitor immediately

    Returns:
        Wired Registry
    """
    config = config or load_config()
    if runtime is None:
        runtime = await select_runtime(
            config.container.container_runner,
            internal_port=config.container.internal_port,
        )
    logger.debug(f"Using container runtime: {runtime.name}")

    persister = SessionStreamPersister(
        SessionLog(config.sessions_dir()),
        viewer_queue_size=config.app.viewer_queue_size,
        schedule_task_handler=schedule_task_handler,
    )
    manager = SandboxManager(
        config,
        runtime,
        env_provider=env_provider,
        status_listener=persister.broadcast_global,
        transport=transport,
        stream_connector=stream_connector,
    )

    auto_sleep = None
    if last_activity is not None:
        auto_sleep = AutoSleepMonitor(
            manager,
            persister,
            last_activity,
            timeout_minutes=config.app.auto_sleep_timeout_minutes,
            poll_interval=config.app.idle_poll_interval,
        )
        if start_auto_sleep:
            auto_sleep.start()

    return Registry(
        config=config,
        runtime=runtime,
        manager=manager,
        persister=persister,
        health_monitor=HealthMonitor.with_defaults(),
        auto_sleep=auto_sleep,
    )
