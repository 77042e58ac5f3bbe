"""
Auto-sleep for idle sandboxes.

A background task periodically checks running sandboxes and stops those
with no active session and no session activity for longer than
app.auto_sleep_timeout_minutes. A timeout of 0 disables stopping.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from superagent.core.sandbox import SandboxManager
from superagent.core.stream import SessionStreamPersister

logger = logging.getLogger(__name__)

# Latest session activity for an agent; None when the agent has no sessions
LastActivityLookup = Callable[[str], Awaitable[datetime | None]]


class AutoSleepMonitor:
    """
    Stops sandboxes that have been idle too long.

    The stop goes through SandboxManager.stop, which notifies the status
    listener, so viewers see agent_status_changed -> stopped.
    """

    def __init__(
        self,
        manager: SandboxManager,
        persister: SessionStreamPersister,
        last_activity: LastActivityLookup,
        *,
        timeout_minutes: int = 30,
        poll_interval: float = 60.0,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            manager: Lifecycle manager owning the sandboxes
            persister: Consulted for sessions that are currently active
            last_activity: Coroutine returning an agent's latest session activity
            timeout_minutes: Idle minutes before a sandbox is stopped (0 disables)
            poll_interval: Seconds between checks
        """
        self.manager = manager
        self.persister = persister
        self.last_activity = last_activity
        self.timeout_minutes = timeout_minutes
        self.poll_interval = poll_interval
        self._task: asyncio.Task[None] | None = None
        self._check_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """Whether the polling task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling. Calling it again while running does nothing."""
        if self.is_running:
            logger.debug("Auto-sleep monitor already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Auto-sleep monitor started, polling every {self.poll_interval:g}s")

    async def stop(self) -> None:
        """Stop polling and wait for the task to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-sleep monitor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.check_idle_sandboxes()
            except Exception:
                logger.exception("Error in auto-sleep check cycle")

    async def check_idle_sandboxes(self, now: datetime | None = None) -> list[str]:
        """
        Run one check cycle.

        Overlapping cycles are skipped.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Ids of agents whose sandboxes were stopped
        """
        if self.timeout_minutes <= 0 or self._check_lock.locked():
            return []

        async with self._check_lock:
            now = now or datetime.now(timezone.utc)
            timeout = timedelta(minutes=self.timeout_minutes)
            stopped = []

            for agent_id in await self.manager.running_agent_ids():
                try:
                    if self.persister.has_active_sessions_for_agent(agent_id):
                        continue

                    last_activity = await self.last_activity(agent_id)
                    # No sessions yet: the sandbox was only just started
                    if last_activity is None:
                        continue

                    if now - last_activity > timeout:
                        logger.info(
                            f"Agent {agent_id} idle for >{self.timeout_minutes}m, stopping sandbox"
                        )
                        await self.manager.stop(agent_id)
                        stopped.append(agent_id)
                except Exception:
                    logger.exception(f"Error checking idle state of agent {agent_id}")

            return stopped
