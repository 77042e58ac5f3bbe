"""
Runtime selection and availability reporting.

Chooses which registered RuntimeAdapter the lifecycle manager drives, and
reports detailed per-runtime availability (installed, daemon running) with
a short-lived cache so status pages do not spawn CLI probes on every call.
"""

import asyncio
import logging
import time

from superagent.core.exceptions import RuntimeUnavailableError

from .adapter import RuntimeAdapter, get_runtime_class, list_runtimes
from .models import RunnerAvailability

logger = logging.getLogger(__name__)

AUTO = "auto"

# How long check_all_runtimes results stay fresh (seconds)
AVAILABILITY_CACHE_TTL = 60.0

_availability_cache: list[RunnerAvailability] | None = None
_availability_cached_at: float = 0.0


def _is_eligible(runtime_class: type[RuntimeAdapter]) -> bool:
    is_eligible = getattr(runtime_class, "is_eligible", None)
    return bool(is_eligible()) if callable(is_eligible) else True


def supported_runtimes() -> list[str]:
    """
    List runtimes eligible on this platform, in preference order.

    Returns:
        Runtime names (e.g., ['docker', 'podman'] on Linux)
    """
    return [name for name in list_runtimes() if _is_eligible(get_runtime_class(name))]


def create_runtime(name: str, internal_port: int | None = None) -> RuntimeAdapter:
    """
    Instantiate a registered runtime adapter.

    Args:
        name: Runtime name
        internal_port: Control API port inside the container

    Returns:
        Adapter instance

    Raises:
        ValueError: If the runtime is not registered
    """
    runtime_class = get_runtime_class(name)
    if internal_port is None:
        return runtime_class()
    return runtime_class(internal_port=internal_port)  # type: ignore[call-arg]


async def check_runtime(name: str) -> RunnerAvailability:
    """
    Check detailed availability of one runtime.

    Args:
        name: Runtime name

    Returns:
        RunnerAvailability; the daemon is only probed when the CLI is installed
    """
    try:
        runtime = create_runtime(name)
    except ValueError:
        return RunnerAvailability(runner=name)

    installed = await runtime.is_available()
    if not installed:
        return RunnerAvailability(runner=name)

    running = await runtime.is_running()
    return RunnerAvailability(runner=name, installed=True, running=running)


async def check_all_runtimes(use_cache: bool = True) -> list[RunnerAvailability]:
    """
    Check availability of every supported runtime.

    Args:
        use_cache: Return cached results younger than AVAILABILITY_CACHE_TTL

    Returns:
        One RunnerAvailability per supported runtime, in preference order
    """
    global _availability_cache, _availability_cached_at

    now = time.monotonic()
    if (
        use_cache
        and _availability_cache is not None
        and now - _availability_cached_at < AVAILABILITY_CACHE_TTL
    ):
        return _availability_cache

    results = list(await asyncio.gather(*(check_runtime(name) for name in supported_runtimes())))
    _availability_cache = results
    _availability_cached_at = now
    return results


async def refresh_runtime_availability() -> list[RunnerAvailability]:
    """Drop the availability cache and probe again."""
    clear_runtime_availability_cache()
    return await check_all_runtimes(use_cache=False)


def clear_runtime_availability_cache() -> None:
    """Clear cached availability results."""
    global _availability_cache, _availability_cached_at
    _availability_cache = None
    _availability_cached_at = 0.0


async def select_runtime(
    preferred: str = AUTO,
    *,
    internal_port: int | None = None,
    strict: bool = False,
) -> RuntimeAdapter:
    """
    Choose the runtime adapter the manager should drive.

    Selection order:
    1. The preferred runtime, if it is registered and usable
    2. The first usable runtime in preference order
    3. The preferred runtime anyway (or the first supported one), so that
       start failures surface as normal sandbox errors later

    Args:
        preferred: Configured runtime name, or 'auto'
        internal_port: Control API port inside the container
        strict: Raise instead of falling back to an unusable runtime

    Returns:
        Runtime adapter instance

    Raises:
        RuntimeUnavailableError: If strict and no runtime is usable, or if
            no runtime is eligible on this platform at all
    """
    preferred = (preferred or AUTO).lower()
    candidates = supported_runtimes()

    if preferred != AUTO and preferred not in list_runtimes():
        raise RuntimeUnavailableError(
            f"Unknown container runtime '{preferred}'. "
            f"Available runtimes: {', '.join(list_runtimes())}",
            runtime=preferred,
        )

    availability = await check_all_runtimes()
    usable = [entry.runner for entry in availability if entry.available]

    if preferred != AUTO and preferred in usable:
        logger.debug(f"Using configured container runtime: {preferred}")
        return create_runtime(preferred, internal_port)

    if usable:
        chosen = usable[0]
        if preferred != AUTO:
            logger.warning(
                f"Configured container runtime '{preferred}' is not available, "
                f"falling back to '{chosen}'"
            )
        return create_runtime(chosen, internal_port)

    if strict:
        raise RuntimeUnavailableError(
            "No container runtime is available. Install and start Docker or Podman.",
            checked=candidates,
        )

    fallback = preferred if preferred != AUTO else (candidates[0] if candidates else None)
    if fallback is None:
        raise RuntimeUnavailableError("No container runtime is supported on this platform")

    logger.warning(f"No container runtime is available; using '{fallback}' anyway")
    return create_runtime(fallback, internal_port)
