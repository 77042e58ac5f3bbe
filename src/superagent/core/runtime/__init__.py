"""
Container runtime adapters.

This module provides a pluggable runtime layer so the lifecycle manager
never shells out directly. Docker, Podman and Apple's container CLI are
supported behind one RuntimeAdapter protocol.

Example usage:
    from superagent.core.runtime import select_runtime

    runtime = await select_runtime("auto")
    info = await runtime.inspect("superagent-a1")
    print(info.running, info.host_port)
"""

from .adapter import RuntimeAdapter, get_runtime_class, list_runtimes, register_runtime

# Registration order is preference order: apple-container, docker, podman
from .apple import AppleContainerRuntime
from .base import OCIRuntime
from .docker import DockerRuntime
from .models import ContainerInfo, ContainerStats, LaunchSpec, RunnerAvailability
from .podman import PodmanRuntime
from .selector import (
    check_all_runtimes,
    check_runtime,
    clear_runtime_availability_cache,
    create_runtime,
    refresh_runtime_availability,
    select_runtime,
    supported_runtimes,
)

__all__ = [
    # Models
    "ContainerInfo",
    "ContainerStats",
    "LaunchSpec",
    "RunnerAvailability",
    # Protocol and registry
    "RuntimeAdapter",
    "register_runtime",
    "get_runtime_class",
    "list_runtimes",
    # Implementations
    "OCIRuntime",
    "DockerRuntime",
    "PodmanRuntime",
    "AppleContainerRuntime",
    # Selection
    "select_runtime",
    "create_runtime",
    "supported_runtimes",
    "check_runtime",
    "check_all_runtimes",
    "refresh_runtime_availability",
    "clear_runtime_availability_cache",
]
