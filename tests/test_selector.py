"""
Tests for runtime selection and availability reporting.
"""

from unittest.mock import AsyncMock, patch

import pytest

from superagent.core.exceptions import RuntimeUnavailableError
from superagent.core.runtime import (
    DockerRuntime,
    PodmanRuntime,
    RunnerAvailability,
    check_all_runtimes,
    check_runtime,
    select_runtime,
)
from superagent.core.runtime import selector

SELECTOR = "superagent.core.runtime.selector"


def _availability(**available: bool) -> list[RunnerAvailability]:
    return [
        RunnerAvailability(runner=name, installed=ok, running=ok) for name, ok in available.items()
    ]


@pytest.fixture
def linux_runtimes(monkeypatch):
    """Pretend only docker and podman are eligible."""
    monkeypatch.setattr(selector, "supported_runtimes", lambda: ["docker", "podman"])


class TestSelectRuntime:
    """Test select_runtime preference and fallback."""

    @pytest.mark.asyncio
    async def test_preferred_available(self, linux_runtimes):
        """Test the configured runtime wins when usable."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=True, podman=True)),
        ):
            runtime = await select_runtime("podman")
        assert isinstance(runtime, PodmanRuntime)

    @pytest.mark.asyncio
    async def test_auto_takes_first_usable(self, linux_runtimes):
        """Test auto picks the first usable runtime in preference order."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=False, podman=True)),
        ):
            runtime = await select_runtime("auto")
        assert isinstance(runtime, PodmanRuntime)

    @pytest.mark.asyncio
    async def test_falls_back_when_preferred_unusable(self, linux_runtimes, caplog):
        """Test fallback to another usable runtime logs a warning."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=False, podman=True)),
        ):
            runtime = await select_runtime("docker")
        assert isinstance(runtime, PodmanRuntime)
        assert "falling back to 'podman'" in caplog.text

    @pytest.mark.asyncio
    async def test_nothing_usable_returns_preferred(self, linux_runtimes):
        """Test the preferred runtime is returned when nothing is usable."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=False, podman=False)),
        ):
            runtime = await select_runtime("docker")
        assert isinstance(runtime, DockerRuntime)

    @pytest.mark.asyncio
    async def test_nothing_usable_strict(self, linux_runtimes):
        """Test strict selection raises when nothing is usable."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=False, podman=False)),
        ):
            with pytest.raises(RuntimeUnavailableError):
                await select_runtime("auto", strict=True)

    @pytest.mark.asyncio
    async def test_unknown_runtime(self):
        """Test an unregistered runtime name is rejected."""
        with pytest.raises(RuntimeUnavailableError, match="Unknown container runtime"):
            await select_runtime("lxc")

    @pytest.mark.asyncio
    async def test_internal_port_passed_through(self, linux_runtimes):
        """Test the adapter is created with the configured internal port."""
        with patch(
            f"{SELECTOR}.check_all_runtimes",
            AsyncMock(return_value=_availability(docker=True, podman=False)),
        ):
            runtime = await select_runtime("docker", internal_port=8080)
        assert runtime.internal_port == 8080


class TestAvailability:
    """Test detailed availability checks."""

    @pytest.mark.asyncio
    async def test_daemon_not_probed_when_not_installed(self):
        """Test is_running is skipped for a missing CLI."""
        with (
            patch.object(DockerRuntime, "is_available", AsyncMock(return_value=False)),
            patch.object(DockerRuntime, "is_running", AsyncMock(return_value=True)) as running,
        ):
            result = await check_runtime("docker")
        assert result == RunnerAvailability(runner="docker", installed=False, running=False)
        running.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_installed_but_stopped(self):
        """Test installed CLI with a stopped daemon."""
        with (
            patch.object(DockerRuntime, "is_available", AsyncMock(return_value=True)),
            patch.object(DockerRuntime, "is_running", AsyncMock(return_value=False)),
        ):
            result = await check_runtime("docker")
        assert result.installed is True
        assert result.running is False
        assert result.available is False

    @pytest.mark.asyncio
    async def test_results_are_cached(self, linux_runtimes):
        """Test check_all_runtimes reuses fresh results."""
        probe = AsyncMock(side_effect=lambda name: RunnerAvailability(runner=name, installed=True, running=True))
        with patch(f"{SELECTOR}.check_runtime", probe):
            first = await check_all_runtimes()
            second = await check_all_runtimes()
            assert [entry.runner for entry in first] == ["docker", "podman"]
            assert second is first
            assert probe.await_count == 2

            await check_all_runtimes(use_cache=False)
            assert probe.await_count == 4
