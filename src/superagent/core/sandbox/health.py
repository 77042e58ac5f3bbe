"""
Pluggable health checks over container resource stats.

Checkers turn a ContainerStats snapshot into a HealthCheckResult. The
monitor runs every registered checker and keeps only non-ok results.
"""

import logging
from typing import Protocol

from superagent.core.runtime import ContainerStats

from .client import SandboxClient
from .models import HealthCheckResult, HealthStatus

logger = logging.getLogger(__name__)

MEMORY_WARNING_PERCENT = 85.0
MEMORY_CRITICAL_PERCENT = 95.0


class HealthChecker(Protocol):
    """A named check evaluated against one stats snapshot."""

    name: str

    def check(self, agent_id: str, stats: ContainerStats) -> HealthCheckResult:
        """Evaluate the stats for one agent."""
        ...


class MemoryHealthChecker:
    """Warns when a container's memory usage approaches its limit."""

    name = "memory"

    def __init__(
        self,
        warning_percent: float = MEMORY_WARNING_PERCENT,
        critical_percent: float = MEMORY_CRITICAL_PERCENT,
    ) -> None:
        self.warning_percent = warning_percent
        self.critical_percent = critical_percent

    def check(self, agent_id: str, stats: ContainerStats) -> HealthCheckResult:
        details = {
            "memoryPercent": stats.memory_percent,
            "memoryUsageBytes": stats.memory_usage_bytes,
            "memoryLimitBytes": stats.memory_limit_bytes,
        }
        if stats.memory_percent >= self.critical_percent:
            return HealthCheckResult(
                check_name=self.name,
                status=HealthStatus.CRITICAL,
                message=(
                    f"Memory usage is critically high ({stats.memory_percent:.0f}%). "
                    "The container may become unresponsive. "
                    "Consider increasing the memory limit in settings."
                ),
                details=details,
            )
        if stats.memory_percent >= self.warning_percent:
            return HealthCheckResult(
                check_name=self.name,
                status=HealthStatus.WARNING,
                message=(
                    f"Memory usage is high ({stats.memory_percent:.0f}%). "
                    "Consider increasing the memory limit in settings."
                ),
                details=details,
            )
        return HealthCheckResult(check_name=self.name)


class HealthMonitor:
    """
    Registry of health checkers.

    Example:
        >>> monitor = HealthMonitor.with_defaults()
        >>> monitor.check_all("a1", ContainerStats(memory_percent=90.0))[0].status
        <HealthStatus.WARNING: 'warning'>
    """

    def __init__(self) -> None:
        self._checkers: list[HealthChecker] = []

    @classmethod
    def with_defaults(cls) -> "HealthMonitor":
        """Create a monitor with the memory checker registered."""
        monitor = cls()
        monitor.register_checker(MemoryHealthChecker())
        return monitor

    def register_checker(self, checker: HealthChecker) -> None:
        """Add a checker; checkers run in registration order."""
        self._checkers.append(checker)

    def check_all(self, agent_id: str, stats: ContainerStats) -> list[HealthCheckResult]:
        """
        Run every checker against a stats snapshot.

        Args:
            agent_id: Agent the stats belong to
            stats: Resource usage snapshot

        Returns:
            Warning and critical results only
        """
        results = []
        for checker in self._checkers:
            result = checker.check(agent_id, stats)
            if result.status != HealthStatus.OK:
                results.append(result)
        return results

    async def check_sandbox(self, client: SandboxClient) -> list[HealthCheckResult]:
        """
        Fetch stats for a sandbox and run every checker.

        Returns:
            Non-ok results; empty when the runtime reports no stats
        """
        stats = await client.get_stats()
        if stats is None:
            return []
        results = self.check_all(client.agent_id, stats)
        for result in results:
            logger.warning(f"Health check '{result.check_name}' for agent {client.agent_id}: {result.message}")
        return results
