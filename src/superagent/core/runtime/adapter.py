"""
Runtime adapter protocol and registry.

This module defines the RuntimeAdapter protocol that every container engine
shim implements, so the lifecycle manager never shells out directly and an
engine can be swapped for a native SDK client without touching it.
"""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .models import ContainerInfo, ContainerStats, LaunchSpec


@runtime_checkable
class RuntimeAdapter(Protocol):
    """
    Protocol for container runtime adapters.

    The three query methods (is_available, inspect, list_used_host_ports)
    are total: they never raise, and degrade to "unavailable", "not
    running" and "no ports" respectively. Lifecycle actions (build, run)
    raise RuntimeCommandError so the manager can report a start failure.
    """

    @property
    def name(self) -> str:
        """
        Runtime name (e.g., 'docker', 'podman').

        Returns:
            Lowercase runtime identifier
        """
        ...

    @property
    def command(self) -> str:
        """
        The command-line tool this adapter drives.

        Returns:
            Executable name (e.g., 'docker', 'container')
        """
        ...

    async def is_available(self) -> bool:
        """
        Check whether the CLI responds to a version query.

        Returns:
            True if the tool is installed and executable
        """
        ...

    async def is_running(self) -> bool:
        """
        Check whether the daemon or machine behind the CLI is usable.

        Returns:
            True if containers can be launched right now
        """
        ...

    async def inspect(self, container_name: str) -> ContainerInfo:
        """
        Inspect a named container.

        Args:
            container_name: Container to inspect

        Returns:
            ContainerInfo; not-running with no port on any failure
        """
        ...

    async def list_used_host_ports(self) -> set[int]:
        """
        Scan host ports published by containers of this runtime.

        Returns:
            Set of host ports; empty on failure
        """
        ...

    async def image_exists(self, image: str) -> bool:
        """
        Check whether an image is present locally.

        Args:
            image: Image tag

        Returns:
            True if the runtime can inspect the image
        """
        ...

    async def build_image(self, image: str, context: str) -> None:
        """
        Build an image from a build context directory.

        Args:
            image: Tag to build
            context: Build context directory

        Raises:
            RuntimeCommandError: If the build fails
        """
        ...

    async def run_container(self, spec: LaunchSpec) -> str:
        """
        Launch a detached container.

        Args:
            spec: Launch specification

        Returns:
            Container id printed by the runtime

        Raises:
            RuntimeCommandError: If the runtime refuses to launch it
        """
        ...

    async def remove_container(self, container_name: str) -> None:
        """Force-remove a container; a missing container is not an error."""
        ...

    async def stop_container(self, container_name: str) -> None:
        """Stop then remove a container; a missing container is not an error."""
        ...

    def stop_container_sync(
        self,
        container_name: str,
        stop_timeout: float,
        remove_timeout: float,
    ) -> None:
        """
        Stop then remove a container without an event loop.

        Each runtime call is bounded by its timeout; all errors are ignored.
        """
        ...

    async def get_stats(self, container_name: str) -> ContainerStats | None:
        """
        Get resource usage for a running container.

        Returns:
            ContainerStats, or None when unsupported or unavailable
        """
        ...


# Runtime registry, in preference order
_runtimes: dict[str, type[RuntimeAdapter]] = {}


def register_runtime(
    name: str,
) -> Callable[[type[RuntimeAdapter]], type[RuntimeAdapter]]:
    """
    Decorator to register a runtime adapter implementation.

    Registration order is the default preference order.

    Usage:
        @register_runtime("docker")
        class DockerRuntime(OCIRuntime):
            ...

    Args:
        name: Runtime name (e.g., 'docker', 'podman')

    Returns:
        Decorator function
    """

    def decorator(runtime_class: type[RuntimeAdapter]) -> type[RuntimeAdapter]:
        _runtimes[name] = runtime_class
        return runtime_class

    return decorator


def get_runtime_class(name: str) -> type[RuntimeAdapter]:
    """
    Look up a registered runtime adapter class.

    Args:
        name: Runtime name

    Returns:
        Adapter class

    Raises:
        ValueError: If no adapter is registered under that name
    """
    runtime_class = _runtimes.get(name)
    if runtime_class is None:
        raise ValueError(
            f"Runtime '{name}' not registered. Available runtimes: {', '.join(_runtimes.keys())}"
        )
    return runtime_class


def list_runtimes() -> list[str]:
    """
    List all registered runtime names in preference order.

    Returns:
        List of runtime names
    """
    return list(_runtimes.keys())
