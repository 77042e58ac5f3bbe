"""
Environment assembly for sandbox containers.

Merges the environment block passed to the runtime, and renders it
shell-escaped for the debug log of the launch command.
"""

from collections.abc import Mapping

CREDENTIAL_VAR = "ANTHROPIC_API_KEY"
CONFIG_DIR_VAR = "CLAUDE_CONFIG_DIR"
CONFIG_DIR_VALUE = "/workspace/.claude"

REDACTED = "***"


def build_sandbox_env(
    api_key: str | None,
    *overrides: Mapping[str, str | None] | None,
) -> dict[str, str]:
    """
    Merge the environment for a sandbox launch.

    Layers, lowest to highest precedence:
    1. Baseline credential (ANTHROPIC_API_KEY)
    2. Fixed configuration (CLAUDE_CONFIG_DIR)
    3. Each override mapping, in order (per-agent, then call-site)

    Keys whose final value is None are dropped.

    Args:
        api_key: Baseline credential, or None
        *overrides: Override mappings, later ones win

    Returns:
        Environment mapping with no None values

    Example:
        >>> build_sandbox_env("k", {"A": "1"}, {"A": "2", "B": None})
        {'ANTHROPIC_API_KEY': 'k', 'CLAUDE_CONFIG_DIR': '/workspace/.claude', 'A': '2'}
    """
    merged: dict[str, str | None] = {
        CREDENTIAL_VAR: api_key,
        CONFIG_DIR_VAR: CONFIG_DIR_VALUE,
    }
    for layer in overrides:
        if layer:
            merged.update(layer)
    return {key: value for key, value in merged.items() if value is not None}


def shell_quote(value: str) -> str:
    """Wrap in single quotes, escaping embedded quotes as '\\''."""
    return "'" + value.replace("'", "'\\''") + "'"


def format_env_flags(env: Mapping[str, str], redact: tuple[str, ...] = (CREDENTIAL_VAR,)) -> str:
    """
    Render an environment block as shell-escaped `-e` flags.

    Only used for logging; launches pass an argument vector.

    Args:
        env: Environment mapping
        redact: Keys whose values are masked

    Returns:
        String like "-e A='1' -e B='it'\\''s'"
    """
    flags = []
    for key, value in env.items():
        shown = REDACTED if key in redact else value
        flags.append(f"-e {key}={shell_quote(shown)}")
    return " ".join(flags)
