"""
Podman runtime adapter.

Podman keeps the host user's UID inside the container for bind mounts, so
the workspace mount carries ':U' to remap ownership to the container user.
"""

from .adapter import register_runtime
from .base import OCIRuntime


@register_runtime("podman")
class PodmanRuntime(OCIRuntime):
    """Podman runtime adapter (Docker-compatible CLI)."""

    runtime_name = "podman"
    cli_command = "podman"

    def volume_mount_suffix(self) -> str:
        """Remap bind-mount ownership to the container user."""
        return ":U"
