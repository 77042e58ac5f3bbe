"""
Host port allocation for sandbox containers.

Allocation is best effort: a port reported free here can still be taken by
another process before the runtime binds it. There is no cross-process lock.
"""

import logging
import socket

from superagent.core.exceptions import PortAllocationError
from superagent.core.runtime import RuntimeAdapter

logger = logging.getLogger(__name__)

PROBE_HOST = "127.0.0.1"


def is_port_available(port: int, host: str = PROBE_HOST) -> bool:
    """
    Check whether a throwaway listener can bind the port.

    Args:
        port: TCP port to probe
        host: Interface to bind (loopback by default)

    Returns:
        True if the bind succeeded
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


async def allocate_host_port(
    runtime: RuntimeAdapter,
    agent_id: str,
    *,
    base_port: int,
    scan_limit: int,
) -> int:
    """
    Pick a host port for a new sandbox.

    Scans ports published by the runtime's containers, then probes upward
    from base_port and returns the first port that is neither published nor
    bound on the loopback interface.

    Args:
        runtime: Adapter used to list published ports
        agent_id: Agent the port is for (error context only)
        base_port: First candidate port
        scan_limit: Number of candidates to try

    Returns:
        Host port >= base_port

    Raises:
        PortAllocationError: If every candidate is taken
    """
    used = await runtime.list_used_host_ports()
    last_port = min(base_port + scan_limit, 65536)

    for port in range(base_port, last_port):
        if port in used:
            continue
        if is_port_available(port):
            logger.debug(f"Allocated host port {port} for agent {agent_id}")
            return port

    raise PortAllocationError(
        agent_id,
        f"No free host port in range {base_port}-{last_port - 1}",
        base_port=base_port,
        scan_limit=scan_limit,
    )
