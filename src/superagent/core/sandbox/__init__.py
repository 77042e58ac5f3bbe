"""
Sandbox lifecycle and control API facade.

Example usage:
    from superagent.core.sandbox import CreateSessionOptions, SandboxManager

    manager = SandboxManager(config, runtime)
    client = await manager.ensure_running("a1")
    session = await client.create_session(CreateSessionOptions(initial_message="hi"))
    stream = await client.open_stream(session.id)
    async for frame in stream:
        print(frame["type"])
"""

from .client import SandboxClient, StreamConnection
from .environment import build_sandbox_env, format_env_flags
from .health import HealthChecker, HealthMonitor, MemoryHealthChecker
from .manager import SandboxManager, container_name
from .models import (
    CreateSessionOptions,
    HealthCheckResult,
    HealthStatus,
    SandboxInfo,
    SandboxSession,
    SandboxStatus,
    SlashCommandInfo,
    StreamEvent,
)
from .ports import allocate_host_port, is_port_available

__all__ = [
    # Models
    "CreateSessionOptions",
    "HealthCheckResult",
    "HealthStatus",
    "SandboxInfo",
    "SandboxSession",
    "SandboxStatus",
    "SlashCommandInfo",
    "StreamEvent",
    # Lifecycle
    "SandboxManager",
    "container_name",
    "allocate_host_port",
    "is_port_available",
    "build_sandbox_env",
    "format_env_flags",
    # Facade
    "SandboxClient",
    "StreamConnection",
    # Health
    "HealthChecker",
    "HealthMonitor",
    "MemoryHealthChecker",
]
