"""
Process helpers for invoking container runtime command-line tools.

This module provides:
- Async process execution with timeout support (the normal path)
- Process group management for clean termination on timeout
- A blocking, bounded variant for shutdown paths with no event loop

Runtime adapters call these helpers and translate failures into their own
conservative defaults; nothing here raises for a non-zero exit code.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
IS_UNIX = not IS_WINDOWS


class ProcessResult(BaseModel):
    """Structured result from process execution."""

    success: bool
    """Whether the process completed successfully (exit code 0)."""

    exit_code: int | None
    """Process exit code, or None if killed/timed out/never started."""

    stdout: str
    """Standard output from the process."""

    stderr: str
    """Standard error from the process."""

    duration_ms: int
    """Execution duration in milliseconds."""

    timed_out: bool = False
    """Whether the process was terminated due to timeout."""

    error: str | None = None
    """Error message if execution failed before producing an exit code."""


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


async def run_process(
    command: list[str],
    *,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> ProcessResult:
    """
    Run a subprocess with timeout and automatic cleanup.

    Args:
        command: Command and arguments as a list (e.g., ["docker", "ps"])
        timeout: Optional timeout in seconds. None means no timeout.
        env: Optional environment variables, merged over os.environ.
        cwd: Optional working directory for the process.

    Returns:
        ProcessResult with output, exit code, and timing information.

    Example:
        >>> result = await run_process(["docker", "--version"], timeout=10.0)
        >>> if result.success:
        ...     print(result.stdout)
    """
    started_at = datetime.now(timezone.utc)
    process: asyncio.subprocess.Process | None = None

    process_env = None
    if env is not None:
        process_env = os.environ.copy()
        process_env.update(env)

    try:
        kwargs: dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": cwd,
            "env": process_env,
        }

        # Own process group on Unix so a timeout can kill children too
        if IS_UNIX:
            kwargs["start_new_session"] = True

        logger.debug(f"Running process: {' '.join(command)}")
        process = await asyncio.create_subprocess_exec(*command, **kwargs)

        try:
            if timeout is not None:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(),
                    timeout=timeout,
                )
            else:
                stdout_bytes, stderr_bytes = await process.communicate()

            stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
            stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""

            return ProcessResult(
                success=process.returncode == 0,
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration_ms=_elapsed_ms(started_at),
            )

        except asyncio.TimeoutError:
            await kill_process_group(process)
            return ProcessResult(
                success=False,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_at),
                timed_out=True,
                error=f"Process timed out after {timeout}s",
            )

    except FileNotFoundError:
        return ProcessResult(
            success=False,
            exit_code=None,
            stdout="",
            stderr="",
            duration_ms=_elapsed_ms(started_at),
            error=f"Command not found: {command[0]}. Ensure it is installed and in PATH.",
        )

    except OSError as e:
        # Permission denied, exec format errors, ...
        return ProcessResult(
            success=False,
            exit_code=None,
            stdout="",
            stderr="",
            duration_ms=_elapsed_ms(started_at),
            error=f"Failed to start {command[0]}: {e}",
        )

    finally:
        if process is not None and process.returncode is None:
            await kill_process_group(process)


async def kill_process_group(process: asyncio.subprocess.Process) -> None:
    """
    Kill the process group to ensure all child processes are terminated.

    Args:
        process: The subprocess to kill along with its children.
    """
    if process.returncode is not None:
        return

    try:
        if IS_UNIX:
            try:
                pgid = os.getpgid(process.pid)
                os.killpg(pgid, signal.SIGKILL)
                logger.debug(f"Killed process group {pgid}")
            except (ProcessLookupError, OSError) as e:
                logger.debug(f"Process group kill failed (process may be dead): {e}")
        else:
            try:
                process.kill()
            except (ProcessLookupError, OSError) as e:
                logger.debug(f"Process kill failed (process may be dead): {e}")

        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} did not exit after SIGKILL")

    except Exception as e:
        logger.warning(f"Error during process group kill: {e}")


def run_process_sync(command: list[str], *, timeout: float) -> ProcessResult:
    """
    Run a subprocess synchronously with a hard upper bound on the wait.

    Used during abrupt process shutdown when no event loop turn is
    available. Never raises: every failure is folded into the result.

    Args:
        command: Command and arguments as a list
        timeout: Maximum seconds to wait for the process

    Returns:
        ProcessResult describing the outcome
    """
    started_at = datetime.now(timezone.utc)
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return ProcessResult(
            success=completed.returncode == 0,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration_ms=_elapsed_ms(started_at),
        )
    except subprocess.TimeoutExpired:
        return ProcessResult(
            success=False,
            exit_code=None,
            stdout="",
            stderr="",
            duration_ms=_elapsed_ms(started_at),
            timed_out=True,
            error=f"Process timed out after {timeout}s",
        )
    except Exception as e:
        return ProcessResult(
            success=False,
            exit_code=None,
            stdout="",
            stderr="",
            duration_ms=_elapsed_ms(started_at),
            error=str(e),
        )
