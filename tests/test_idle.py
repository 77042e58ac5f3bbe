"""
Tests for the auto-sleep idle monitor.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from superagent.core.idle import AutoSleepMonitor
from superagent.core.sandbox import SandboxManager
from superagent.core.stream import SessionLog, SessionStreamPersister

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager(config, fake_runtime, control_api):
    """Provide a manager wired to the fakes."""
    return SandboxManager(config, fake_runtime, transport=control_api.transport)


@pytest.fixture
def persister(tmp_path):
    """Provide a persister with no subscriptions."""
    return SessionStreamPersister(SessionLog(tmp_path / "sessions"))


def _lookup(activity: dict):
    async def last_activity(agent_id):
        return activity.get(agent_id)

    return last_activity


class TestCheckIdleSandboxes:
    """Test one check cycle."""

    @pytest.mark.asyncio
    async def test_stops_only_idle_agents(self, manager, persister, fake_runtime):
        """Test agents idle longer than the timeout are stopped."""
        await manager.ensure_running("idle")
        await manager.ensure_running("recent")
        activity = {
            "idle": NOW - timedelta(minutes=45),
            "recent": NOW - timedelta(minutes=5),
        }
        monitor = AutoSleepMonitor(manager, persister, _lookup(activity), timeout_minutes=30)

        assert await monitor.check_idle_sandboxes(now=NOW) == ["idle"]
        assert fake_runtime.stopped == ["superagent-idle"]
        assert await manager.running_agent_ids() == ["recent"]

    @pytest.mark.asyncio
    async def test_active_session_keeps_sandbox(self, manager, persister):
        """Test an agent with an active session is never stopped."""
        await manager.ensure_running("a1")
        persister.mark_session_active("s1", "a1")
        monitor = AutoSleepMonitor(
            manager, persister, _lookup({"a1": NOW - timedelta(hours=3)}), timeout_minutes=30
        )

        assert await monitor.check_idle_sandboxes(now=NOW) == []

    @pytest.mark.asyncio
    async def test_no_sessions_yet(self, manager, persister):
        """Test an agent without any session activity is left running."""
        await manager.ensure_running("a1")
        monitor = AutoSleepMonitor(manager, persister, _lookup({}), timeout_minutes=30)

        assert await monitor.check_idle_sandboxes(now=NOW) == []

    @pytest.mark.asyncio
    async def test_zero_timeout_disables(self, manager, persister):
        """Test a timeout of 0 never stops anything."""
        await manager.ensure_running("a1")
        monitor = AutoSleepMonitor(
            manager, persister, _lookup({"a1": NOW - timedelta(days=1)}), timeout_minutes=0
        )

        assert await monitor.check_idle_sandboxes(now=NOW) == []

    @pytest.mark.asyncio
    async def test_lookup_failure_isolated(self, manager, persister):
        """Test one failing agent does not stop the cycle."""
        await manager.ensure_running("broken")
        await manager.ensure_running("idle")

        async def last_activity(agent_id):
            if agent_id == "broken":
                raise RuntimeError("database is locked")
            return NOW - timedelta(hours=1)

        monitor = AutoSleepMonitor(manager, persister, last_activity, timeout_minutes=30)

        assert await monitor.check_idle_sandboxes(now=NOW) == ["idle"]


class TestMonitorTask:
    """Test the background polling task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager, persister):
        """Test the task runs until stopped."""
        monitor = AutoSleepMonitor(manager, persister, _lookup({}), poll_interval=0.01)

        monitor.start()
        monitor.start()
        assert monitor.is_running is True
        await asyncio.sleep(0.03)

        await monitor.stop()
        assert monitor.is_running is False
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_polling_stops_idle_sandbox(self, manager, persister, fake_runtime):
        """Test the poll loop performs checks on its own."""
        await manager.ensure_running("a1")
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        monitor = AutoSleepMonitor(
            manager, persister, _lookup({"a1": old}), timeout_minutes=30, poll_interval=0.01
        )

        monitor.start()
        for _ in range(100):
            if fake_runtime.stopped:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert fake_runtime.stopped == ["superagent-a1"]
