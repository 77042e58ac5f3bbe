"""
Tests for the superagent CLI.

Commands get a registry built on the in-memory runtime, so no container
tool is needed.
"""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from superagent import __version__
from superagent.cli import app
from superagent.core.registry import create_registry
from superagent.core.runtime import ContainerStats, RunnerAvailability

runner = CliRunner()

TURN_FRAMES = [
    {"type": "system", "subtype": "init", "session_id": "sess-1"},
    {
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello there"}},
    },
    {"type": "result", "subtype": "success", "timestamp": "2026-01-01T00:00:05Z"},
]


@pytest.fixture
def cli_env(config, monkeypatch):
    """Point the CLI's own config loading at the test data dir."""
    monkeypatch.setenv("SUPERAGENT_DATA_DIR", str(config.data_dir))
    return config


@pytest.fixture
def registry_factory(cli_env, fake_runtime, control_api, connector):
    """
    Replace create_registry in the CLI modules.

    Each command invocation gets a fresh registry sharing one runtime, as
    separate CLI processes would.
    """

    async def scripted_connector(url):
        # Every stream replays one finished turn
        websocket = await connector(url)
        for frame in TURN_FRAMES:
            websocket.push(frame)
        return websocket

    async def fake_create_registry():
        return await create_registry(
            cli_env,
            runtime=fake_runtime,
            transport=control_api.transport,
            stream_connector=scripted_connector,
        )

    with (
        patch("superagent.cli.sandbox.create_registry", new=fake_create_registry),
        patch("superagent.cli.session.create_registry", new=fake_create_registry),
    ):
        yield connector


class TestVersion:
    """Tests for the version command."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestRuntimes:
    """Tests for the runtimes command."""

    def test_lists_runtimes(self, cli_env):
        """Test every runtime is shown and an available one exits 0."""
        results = [
            RunnerAvailability(runner="docker", installed=True, running=True),
            RunnerAvailability(runner="podman", installed=True, running=False),
        ]
        with patch("superagent.cli.sandbox.check_all_runtimes", return_value=results):
            result = runner.invoke(app, ["runtimes"])

        assert result.exit_code == 0, result.output
        assert "docker" in result.output
        assert "podman" in result.output
        assert "Configured runtime: docker" in result.output

    def test_none_available(self, cli_env):
        """Test exit code 1 when nothing is usable."""
        results = [RunnerAvailability(runner="docker", installed=False)]
        with patch("superagent.cli.sandbox.check_all_runtimes", return_value=results):
            result = runner.invoke(app, ["runtimes"])

        assert result.exit_code == 1
        assert "No container runtime is available" in result.output


class TestSandboxCommands:
    """Tests for start, stop, status and health."""

    def test_start_status_stop(self, registry_factory, fake_runtime):
        """Test a sandbox started by one command is seen and stopped by others."""
        result = runner.invoke(app, ["start", "a1"])
        assert result.exit_code == 0, result.output
        assert "Sandbox for a1 is running" in result.output
        assert "superagent-a1" in fake_runtime.containers

        result = runner.invoke(app, ["status", "a1", "a2"])
        assert result.exit_code == 0, result.output
        assert "running" in result.output
        assert "stopped" in result.output

        result = runner.invoke(app, ["stop", "a1"])
        assert result.exit_code == 0, result.output
        assert "Stopped sandbox for a1" in result.output
        assert fake_runtime.containers == {}

    def test_stop_not_running(self, registry_factory):
        """Test stopping an agent with no sandbox."""
        result = runner.invoke(app, ["stop", "a1"])
        assert result.exit_code == 0
        assert "was not running" in result.output

    def test_start_failure(self, registry_factory, fake_runtime):
        """Test start errors are reported with exit code 1."""
        fake_runtime.fail_build = True
        result = runner.invoke(app, ["start", "a1"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_health(self, registry_factory, fake_runtime):
        """Test a healthy sandbox with a memory warning exits 0."""
        runner.invoke(app, ["start", "a1"])
        fake_runtime.stats = ContainerStats(memory_percent=90.0, memory_usage_bytes=900 * 1024 * 1024)

        result = runner.invoke(app, ["health", "a1"])

        assert result.exit_code == 0, result.output
        assert "is healthy" in result.output
        assert "warning:" in result.output

    def test_health_critical(self, registry_factory, fake_runtime):
        """Test critical memory usage exits 1."""
        runner.invoke(app, ["start", "a1"])
        fake_runtime.stats = ContainerStats(memory_percent=99.0)

        result = runner.invoke(app, ["health", "a1"])
        assert result.exit_code == 1

    def test_health_not_running(self, registry_factory):
        """Test a missing sandbox is unhealthy."""
        result = runner.invoke(app, ["health", "a1"])
        assert result.exit_code == 1
        assert "not healthy" in result.output


class TestSessionCommands:
    """Tests for tail and log."""

    def test_tail_requires_session(self, registry_factory):
        """Test tail without a session id or --new fails."""
        result = runner.invoke(app, ["tail", "a1"])
        assert result.exit_code == 1
        assert "Give a session id or --new" in result.output

    def test_tail_new_session(self, registry_factory, cli_env):
        """Test a new session is followed until idle and persisted."""
        result = runner.invoke(app, ["tail", "a1", "--new", "Hi"])

        assert result.exit_code == 0, result.output
        assert "Session sess-1" in result.output
        assert "Hello there" in result.output
        assert registry_factory.last.closed is True

        log_path = cli_env.sessions_dir() / "sess-1.jsonl"
        assert [json.loads(line) for line in log_path.read_text().splitlines()] == TURN_FRAMES

    def test_tail_existing_session(self, registry_factory, control_api):
        """Test following a known session id and sending it a message."""
        result = runner.invoke(app, ["tail", "a1", "sess-7", "--send", "Next"])

        assert result.exit_code == 0, result.output
        assert "Hello there" in result.output
        assert "Session sess-7" not in result.output
        assert registry_factory.last.url.endswith("/sessions/sess-7/stream")

        sent = [r for r in control_api.requests if r.url.path == "/sessions/sess-7/messages"]
        assert [json.loads(r.content) for r in sent] == [{"content": "Next"}]

    def test_log(self, registry_factory):
        """Test a persisted log is printed as events and raw frames."""
        runner.invoke(app, ["tail", "a1", "--new", "Hi"])

        result = runner.invoke(app, ["log", "sess-1"])
        assert result.exit_code == 0, result.output
        assert "system (init)" in result.output
        assert "2026-01-01T00:00:05+00:00 result (success)" in result.output

        result = runner.invoke(app, ["log", "sess-1", "--json"])
        assert result.exit_code == 0
        assert '"text_delta"' in result.output

    def test_log_missing(self, cli_env):
        """Test a missing log exits 1."""
        result = runner.invoke(app, ["log", "nope"])
        assert result.exit_code == 1
        assert "No log for session nope" in result.output

    def test_log_unsafe_id(self, cli_env):
        """Test a path-like session id is rejected."""
        result = runner.invoke(app, ["log", "../etc"])
        assert result.exit_code == 1
