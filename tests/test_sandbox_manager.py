"""
Tests for the container lifecycle manager.

Uses the in-memory runtime from conftest and a MockTransport control API,
so no container tool is needed.
"""

import asyncio
from pathlib import Path

import pytest

from superagent.core.exceptions import (
    ContainerLaunchError,
    HealthTimeoutError,
    ImageBuildError,
    SandboxStartError,
)
from superagent.core.sandbox import SandboxManager, SandboxStatus, container_name


@pytest.fixture
def events():
    """Collect status notifications."""
    return []


@pytest.fixture
def manager(config, fake_runtime, control_api, connector, events):
    """Provide a manager wired to the fakes."""
    return SandboxManager(
        config,
        fake_runtime,
        status_listener=events.append,
        transport=control_api.transport,
        stream_connector=connector,
    )


class TestEnsureRunning:
    """Test starting sandboxes."""

    @pytest.mark.asyncio
    async def test_cold_start(self, manager, fake_runtime, config, events):
        """Test build, launch and health wait on a cold start."""
        client = await manager.ensure_running("a1")

        assert fake_runtime.build_calls == ["superagent-agent:latest"]
        assert len(fake_runtime.run_calls) == 1
        spec = fake_runtime.run_calls[0]
        assert spec.name == "superagent-a1"
        assert spec.host_port >= config.container.base_port
        assert spec.internal_port == 3000
        assert spec.workspace_dir == config.agent_workspace_dir("a1")
        assert spec.workspace_dir.is_dir()
        assert fake_runtime.removed == ["superagent-a1"]

        assert client.agent_id == "a1"
        info = await manager.get_info("a1")
        assert info.status == SandboxStatus.RUNNING
        assert info.host_port == spec.host_port
        assert events == [{"type": "agent_status_changed", "agentSlug": "a1", "status": "running"}]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_start(self, manager, fake_runtime, events):
        """Test simultaneous calls produce one build, one port and one launch."""
        fake_runtime.build_delay = 0.05

        clients = await asyncio.gather(*(manager.ensure_running("a1") for _ in range(5)))

        assert len(fake_runtime.build_calls) == 1
        assert len(fake_runtime.run_calls) == 1
        assert all(client is clients[0] for client in clients)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_image_built_once_across_agents(self, manager, fake_runtime):
        """Test two agents sharing an image wait for one build."""
        fake_runtime.build_delay = 0.05

        await asyncio.gather(manager.ensure_running("a1"), manager.ensure_running("a2"))

        assert fake_runtime.build_calls == ["superagent-agent:latest"]
        assert {spec.name for spec in fake_runtime.run_calls} == {"superagent-a1", "superagent-a2"}

    @pytest.mark.asyncio
    async def test_already_running(self, manager, fake_runtime, events):
        """Test a running sandbox is reused without side effects."""
        fake_runtime.containers["superagent-a1"] = 4100

        await manager.ensure_running("a1")

        assert fake_runtime.build_calls == []
        assert fake_runtime.run_calls == []
        assert events == []

    @pytest.mark.asyncio
    async def test_existing_image_not_rebuilt(self, manager, fake_runtime):
        """Test a present image skips the build."""
        fake_runtime.images.add("superagent-agent:latest")
        await manager.ensure_running("a1")
        assert fake_runtime.build_calls == []

    @pytest.mark.asyncio
    async def test_reports_starting(self, manager, fake_runtime):
        """Test status is 'starting' while a start is in flight."""
        fake_runtime.build_delay = 0.05
        task = asyncio.create_task(manager.ensure_running("a1"))
        await asyncio.sleep(0.01)

        assert manager.is_starting("a1") is True
        assert (await manager.get_info("a1")).status == SandboxStatus.STARTING

        await task
        assert manager.is_starting("a1") is False

    @pytest.mark.asyncio
    async def test_environment_layers(self, config, fake_runtime, control_api, monkeypatch):
        """Test credential, per-agent and call-site env are merged in order."""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        async def agent_env(agent_id):
            return {"GITHUB_TOKEN": f"{agent_id}-token", "SLACK_TOKEN": "slack"}

        manager = SandboxManager(
            config,
            fake_runtime,
            env_provider=agent_env,
            transport=control_api.transport,
        )
        await manager.ensure_running("a1", env={"SLACK_TOKEN": None, "EXTRA": "1"})

        assert fake_runtime.run_calls[0].env == {
            "ANTHROPIC_API_KEY": "sk-test",
            "CLAUDE_CONFIG_DIR": "/workspace/.claude",
            "GITHUB_TOKEN": "a1-token",
            "EXTRA": "1",
        }

    @pytest.mark.asyncio
    async def test_per_agent_image(self, config, fake_runtime, control_api):
        """Test an {agent_id} placeholder in the image tag."""
        config.container.agent_image = "agents/{agent_id}:latest"
        manager = SandboxManager(config, fake_runtime, transport=control_api.transport)

        await manager.ensure_running("a1")

        assert fake_runtime.run_calls[0].image == "agents/a1:latest"


class TestStartFailures:
    """Test start failure handling."""

    @pytest.mark.asyncio
    async def test_health_timeout_stops_container(self, manager, fake_runtime, control_api, events):
        """Test an unhealthy sandbox is stopped and reported."""
        control_api.healthy = False

        with pytest.raises(HealthTimeoutError) as exc_info:
            await manager.ensure_running("a1")

        assert isinstance(exc_info.value, SandboxStartError)
        assert "superagent-a1" in fake_runtime.stopped
        assert (await manager.get_info("a1")).status == SandboxStatus.STOPPED
        assert events == []

    @pytest.mark.asyncio
    async def test_missing_build_context(self, config, fake_runtime, control_api, tmp_path):
        """Test a missing image with no build context fails cleanly."""
        config.container.build_context = str(tmp_path / "missing")
        manager = SandboxManager(config, fake_runtime, transport=control_api.transport)

        with pytest.raises(ImageBuildError):
            await manager.ensure_running("a1")
        assert fake_runtime.run_calls == []

    @pytest.mark.asyncio
    async def test_build_failure(self, manager, fake_runtime):
        """Test build command failures become ImageBuildError."""
        fake_runtime.fail_build = True
        with pytest.raises(ImageBuildError):
            await manager.ensure_running("a1")

    @pytest.mark.asyncio
    async def test_launch_failure(self, manager, fake_runtime):
        """Test launch failures become ContainerLaunchError."""
        fake_runtime.fail_run = True
        with pytest.raises(ContainerLaunchError) as exc_info:
            await manager.ensure_running("a1")
        assert "port is already allocated" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failure_is_not_sticky(self, manager, fake_runtime):
        """Test a later call retries after a failed start."""
        fake_runtime.fail_run = True
        with pytest.raises(ContainerLaunchError):
            await manager.ensure_running("a1")

        fake_runtime.fail_run = False
        await manager.ensure_running("a1")
        assert len(fake_runtime.run_calls) == 2

    @pytest.mark.asyncio
    async def test_stop_cancels_start(self, manager, fake_runtime):
        """Test stopping during a start fails the waiting callers."""
        fake_runtime.build_delay = 0.5
        task = asyncio.create_task(manager.ensure_running("a1"))
        await asyncio.sleep(0.01)

        await manager.stop("a1")

        with pytest.raises(SandboxStartError, match="cancelled"):
            await task
        assert fake_runtime.run_calls == []


class TestStop:
    """Test stopping sandboxes."""

    @pytest.mark.asyncio
    async def test_stop(self, manager, fake_runtime, events):
        """Test stop removes the container and notifies once."""
        await manager.ensure_running("a1")
        events.clear()

        await manager.stop("a1")
        await manager.stop("a1")

        assert (await manager.get_info("a1")).status == SandboxStatus.STOPPED
        assert events == [{"type": "agent_status_changed", "agentSlug": "a1", "status": "stopped"}]

    @pytest.mark.asyncio
    async def test_stop_never_started(self, manager, fake_runtime, events):
        """Test stopping an unknown agent is a no-op."""
        await manager.stop("ghost")
        assert fake_runtime.stopped == []
        assert events == []

    @pytest.mark.asyncio
    async def test_stop_closes_streams(self, manager, connector):
        """Test stream connections are closed before the container stops."""
        client = await manager.ensure_running("a1")
        await client.open_stream("s1")

        await manager.stop("a1")

        assert client.open_stream_count == 0
        assert connector.last.closed is True

    @pytest.mark.asyncio
    async def test_stop_all(self, manager, fake_runtime):
        """Test every known sandbox is stopped."""
        await manager.ensure_running("a1")
        await manager.ensure_running("a2")
        assert await manager.has_running_agents() is True
        assert set(await manager.running_agent_ids()) == {"a1", "a2"}

        await manager.stop_all()

        assert fake_runtime.containers == {}
        assert await manager.has_running_agents() is False

    @pytest.mark.asyncio
    async def test_stop_all_sync(self, manager, fake_runtime):
        """Test the blocking shutdown path."""
        await manager.ensure_running("a1")

        manager.stop_all_sync()

        assert fake_runtime.stopped == ["superagent-a1"]
        assert fake_runtime.containers == {}

    def test_stop_all_sync_with_nothing_running(self, manager):
        """Test the blocking shutdown path is safe when idle."""
        manager.stop_all_sync()


class TestMisc:
    """Test helpers."""

    def test_container_name(self):
        """Test the container naming scheme."""
        assert container_name("a1") == "superagent-a1"

    def test_client_is_cached(self, manager):
        """Test get_client returns one facade per agent."""
        assert manager.get_client("a1") is manager.get_client("a1")
        manager.remove_client("a1")
        assert manager.get_client("a1") is not None

    def test_workspace_dir(self, config):
        """Test workspaces live under the data directory."""
        assert config.agent_workspace_dir("a1") == Path(config.data_dir) / "agents" / "a1" / "workspace"
