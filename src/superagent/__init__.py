"""
Superagent - container sandboxes for agents.

Runs each agent's control API in its own container and persists the live
stream of every session it hosts.
"""

__version__ = "0.1.0"

# Re-export core models for convenience
from superagent.core.config.models import SuperagentConfig
from superagent.core.sandbox.models import SandboxInfo, SandboxStatus

__all__ = ["SuperagentConfig", "SandboxInfo", "SandboxStatus", "__version__"]
