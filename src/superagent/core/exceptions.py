"""
Custom exceptions for the sandbox core.

This module defines the exception hierarchy raised by the lifecycle manager,
the sandbox client facade and the stream persister. Runtime adapter failures
never surface here: adapters degrade to conservative defaults instead.

Exception Hierarchy:
    SuperagentError (base)
    ├── RuntimeUnavailableError (no usable container runtime)
    ├── RuntimeCommandError (a runtime build/run command failed)
    ├── SandboxError (errors tied to one agent's sandbox)
    │   ├── SandboxStartError (ensure_running failed)
    │   │   ├── ImageBuildError
    │   │   ├── PortAllocationError
    │   │   ├── ContainerLaunchError
    │   │   └── HealthTimeoutError
    │   ├── SandboxNotRunningError (action needs a live sandbox)
    │   ├── SandboxUnreachableError (network-level failure)
    │   └── SandboxRequestError (non-2xx response from the control API)
    └── StreamError (stream subscription failures)

Example:
    >>> from superagent.core.exceptions import SandboxStartError
    >>> try:
    ...     raise SandboxStartError("a1", "Sandbox failed to become healthy")
    ... except SandboxStartError as e:
    ...     print(e.agent_id, e)
    a1 [a1] Sandbox failed to become healthy
"""


class SuperagentError(Exception):
    """
    Base exception for all sandbox core errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
    """

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize an error with message and context.

        Args:
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class RuntimeUnavailableError(SuperagentError):
    """
    Raised when no container runtime can be selected.

    Only raised at selection time; once an adapter exists, its methods
    never raise for an unavailable tool.
    """


class RuntimeCommandError(SuperagentError):
    """
    Raised by runtime adapters when a lifecycle command fails.

    Only build and run raise this; query methods degrade to defaults.

    Attributes:
        command: The argument vector that failed
        exit_code: Exit code, or None if the process never finished
        stderr: Captured standard error
    """

    def __init__(
        self,
        message: str,
        command: list[str],
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, command=command, exit_code=exit_code)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        """Return message with the last stderr line, when there is one."""
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
        return f"{self.message}: {detail}" if detail else self.message


class SandboxError(SuperagentError):
    """
    Base exception for errors concerning one agent's sandbox.

    Attributes:
        agent_id: Agent whose sandbox failed
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, agent_id: str, message: str, **context: object) -> None:
        """
        Initialize a sandbox error.

        Args:
            agent_id: Agent whose sandbox failed
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message, agent_id=agent_id, **context)
        self.agent_id = agent_id

    def __str__(self) -> str:
        """Return string representation with the agent id."""
        return f"[{self.agent_id}] {self.message}"


class SandboxStartError(SandboxError):
    """
    Raised when ensure_running cannot bring a sandbox up.

    Build failures, port exhaustion, launch failures and health timeouts all
    collapse into this type so callers handle a single "start failed" case.
    The underlying cause is preserved via ``__cause__``.
    """


class ImageBuildError(SandboxStartError):
    """Raised when the sandbox image cannot be built."""


class PortAllocationError(SandboxStartError):
    """Raised when no free host port is found within the scan window."""


class ContainerLaunchError(SandboxStartError):
    """Raised when the runtime refuses to launch the container."""


class HealthTimeoutError(SandboxStartError):
    """
    Raised when the sandbox does not answer /health before the timeout.

    Attributes:
        timeout: Seconds waited before giving up
    """

    def __init__(self, agent_id: str, timeout: float, **context: object) -> None:
        super().__init__(
            agent_id,
            f"Sandbox failed to become healthy within {timeout:g}s",
            timeout=timeout,
            **context,
        )
        self.timeout = timeout


class SandboxNotRunningError(SandboxError):
    """
    Raised instead of attempting an action that requires a live sandbox.

    The running check is made just in time against the runtime adapter.
    """

    def __init__(self, agent_id: str, message: str = "Sandbox is not running") -> None:
        super().__init__(agent_id, message)


class SandboxUnreachableError(SandboxError):
    """
    Raised when a running sandbox's control API cannot be reached.

    Distinct from SandboxNotRunningError so callers can retry a transient
    network condition instead of restarting the sandbox.

    Example:
        >>> import httpx
        >>> try:
        ...     raise httpx.ConnectError("Connection refused")
        ... except httpx.ConnectError as e:
        ...     raise SandboxUnreachableError(
        ...         "a1",
        ...         "Failed to reach sandbox",
        ...         url="http://localhost:4000/health",
        ...     ) from e
    """


class SandboxRequestError(SandboxError):
    """
    Raised when the control API answers with a non-success status.

    Attributes:
        status_code: HTTP status code returned by the sandbox
    """

    def __init__(
        self,
        agent_id: str,
        message: str,
        status_code: int,
        **context: object,
    ) -> None:
        super().__init__(agent_id, message, status_code=status_code, **context)
        self.status_code = status_code


class StreamError(SuperagentError):
    """Raised when a session stream subscription cannot be established."""


__all__ = [
    "SuperagentError",
    "RuntimeUnavailableError",
    "RuntimeCommandError",
    "SandboxError",
    "SandboxStartError",
    "ImageBuildError",
    "PortAllocationError",
    "ContainerLaunchError",
    "HealthTimeoutError",
    "SandboxNotRunningError",
    "SandboxUnreachableError",
    "SandboxRequestError",
    "StreamError",
]
